import os
import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rest_api_client import ApiClient, RetryPolicy  # noqa: E402


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from REST_API_CLIENT_* variables and any local .env file."""
    for key in list(os.environ):
        if key.upper().startswith("REST_API_CLIENT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


class RecordingHandler:
    """MockTransport handler replaying scripted replies.

    Each reply is an ``httpx.Response``, an exception instance to raise,
    or an async callable taking the request. The last reply repeats.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    @property
    def calls(self):
        return len(self.requests)

    async def __call__(self, request):
        self.requests.append(request)
        index = min(len(self.requests), len(self.replies)) - 1
        reply = self.replies[index]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return await reply(request)
        # Fresh copy so repeated replies never share a consumed stream
        return httpx.Response(
            reply.status_code, headers=reply.headers, content=reply.content
        )


@pytest.fixture
def fast_retry():
    """Three attempts, no delay, no jitter."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


@pytest.fixture
def make_client(fast_retry):
    """Factory building an ApiClient over a RecordingHandler."""
    def _make(*replies, **kwargs):
        handler = RecordingHandler(*replies)
        kwargs.setdefault("base_address", "https://api.example.com")
        kwargs.setdefault("retry_policy", fast_retry)
        client = ApiClient(transport=httpx.MockTransport(handler), **kwargs)
        return client, handler

    return _make
