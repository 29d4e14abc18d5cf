"""Unit tests for ApiClient.

Covers the dispatch pipeline end to end over httpx.MockTransport:
request building, authentication, retries, outcome classification,
body decoding, cancellation and transport ownership.
"""

import asyncio
import logging
import json

import httpx
import pytest
from pydantic import BaseModel

from rest_api_client import (
    ApiClient,
    AuthScheme,
    CancellationToken,
    ClientReleasedError,
    Decoded,
    MissingBaseAddressError,
    RawText,
    RetryPolicy,
    ValidationError,
)


class User(BaseModel):
    id: int
    name: str


class Order(BaseModel):
    amount: int
    note: str | None = None


@pytest.mark.asyncio
class TestSuccessfulCalls:
    """2xx responses decode into the envelope."""

    async def test_get_user_with_bearer_token(self, make_client):
        """GET /users/1 against a base address with a bearer token."""
        client, handler = make_client(httpx.Response(200, json={"id": 1, "name": "Ann"}))

        result = await client.get(
            "/users/1", response_type=User, auth_token="abc", auth_scheme=AuthScheme.BEARER
        )

        assert result.success is True
        assert result.data == User(id=1, name="Ann")
        assert result.status_code == 200
        assert result.error_message is None
        assert result.error_data is None

        sent = handler.requests[0]
        assert sent.method == "GET"
        assert str(sent.url) == "https://api.example.com/users/1"
        assert sent.headers["authorization"] == "Bearer abc"
        assert sent.headers["accept"] == "application/json"

    async def test_untyped_json_by_default(self, make_client):
        client, _ = make_client(httpx.Response(200, json={"id": 1, "name": "Ann"}))

        result = await client.get("/users/1")

        assert result.success
        assert result.data == {"id": 1, "name": "Ann"}

    async def test_list_response_type(self, make_client):
        client, _ = make_client(httpx.Response(200, json=[{"id": 1, "name": "Ann"}]))

        result = await client.get("/users", response_type=list[User])

        assert result.data == [User(id=1, name="Ann")]

    async def test_raw_text_strategy(self, make_client):
        """RawText returns the body without parsing it."""
        client, _ = make_client(httpx.Response(200, text="plain body"))

        result = await client.get("/health", response_type=RawText)

        assert result.success
        assert result.data == "plain body"

    async def test_decoded_str_expects_json_string(self, make_client):
        client, _ = make_client(httpx.Response(200, json="hello"))

        result = await client.get("/greeting", response_type=Decoded(str))

        assert result.data == "hello"

    async def test_empty_body_decodes_to_none(self, make_client):
        client, _ = make_client(httpx.Response(204))

        result = await client.delete("/users/1")

        assert result.success
        assert result.status_code == 204
        assert result.data is None

    async def test_get_without_target_uses_base_address(self, make_client):
        client, handler = make_client(
            httpx.Response(200, json={"ok": True}),
            base_address="https://api.example.com/v1",
        )

        result = await client.get()

        assert result.success
        assert str(handler.requests[0].url) == "https://api.example.com/v1/"

    async def test_relative_target_appends_to_base_path(self, make_client):
        client, handler = make_client(
            httpx.Response(200, json={}), base_address="https://api.example.com/v1"
        )

        await client.get("users/1?expand=roles")

        assert str(handler.requests[0].url) == "https://api.example.com/v1/users/1?expand=roles"

    async def test_absolute_target_ignores_base_address(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get("https://other.example.org/ping")

        assert str(handler.requests[0].url) == "https://other.example.org/ping"

    async def test_absolute_target_without_base_address(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}), base_address=None)

        result = await client.get("https://other.example.org/ping")

        assert result.success
        assert handler.calls == 1

    async def test_base_address_query_is_kept_for_relative_targets(self, make_client):
        client, handler = make_client(
            httpx.Response(200, json={}), base_address="https://api.example.com/v1?tenant=a"
        )

        await client.get("users/1")
        await client.get("/users/2?expand=roles")
        await client.get()

        urls = [str(r.url) for r in handler.requests]
        assert urls == [
            "https://api.example.com/v1/users/1?tenant=a",
            "https://api.example.com/v1/users/2?tenant=a&expand=roles",
            "https://api.example.com/v1/?tenant=a",
        ]

    async def test_protocol_relative_target_keeps_its_host(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get("//other.example.org/x?y=1")

        assert str(handler.requests[0].url) == "https://other.example.org/x?y=1"

    async def test_protocol_relative_target_without_base_address(self, make_client):
        client, handler = make_client(httpx.Response(200), base_address=None)

        with pytest.raises(MissingBaseAddressError):
            await client.get("//other.example.org/x")

        assert handler.calls == 0


@pytest.mark.asyncio
class TestRequestBuilding:
    """Headers and payloads of outgoing requests."""

    async def test_post_serializes_payload_as_json(self, make_client):
        client, handler = make_client(httpx.Response(201, json={"id": 7}))

        result = await client.post("/orders", Order(amount=10))

        assert result.success
        sent = handler.requests[0]
        assert sent.method == "POST"
        assert sent.headers["content-type"] == "application/json"
        # None fields are omitted
        assert json.loads(sent.content) == {"amount": 10}

    @pytest.mark.parametrize("verb", ["put", "patch"])
    async def test_write_verbs_send_payload(self, make_client, verb):
        client, handler = make_client(httpx.Response(200, json={}))

        await getattr(client, verb)("/orders/1", {"amount": 3})

        assert handler.requests[0].method == verb.upper()
        assert json.loads(handler.requests[0].content) == {"amount": 3}

    async def test_payload_ignored_for_get(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.send("GET", "/users", {"ignored": True})

        assert handler.requests[0].content == b""
        assert "content-type" not in handler.requests[0].headers

    async def test_default_and_extra_headers(self, make_client):
        client, handler = make_client(
            httpx.Response(200, json={}),
            default_headers={"X-Tenant": "acme", "X-Trace": "on"},
        )

        await client.get("/users", extra_headers={"x-tenant": "globex"})

        sent = handler.requests[0]
        assert sent.headers.get_list("x-tenant") == ["globex"]
        assert sent.headers["x-trace"] == "on"

    async def test_extra_headers_are_request_scoped(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get("/a", extra_headers={"X-Once": "1"})
        await client.get("/b")

        assert "x-once" not in handler.requests[1].headers
        assert "x-once" not in client.default_headers

    async def test_basic_auth_uses_token_verbatim(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get("/me", auth_token="dXNlcjpwYXNz", auth_scheme=AuthScheme.BASIC)

        assert handler.requests[0].headers["authorization"] == "Basic dXNlcjpwYXNz"

    async def test_api_key_replaces_existing_header(self, make_client):
        client, handler = make_client(
            httpx.Response(200, json={}), default_headers={"X-API-Key": "stale"}
        )

        await client.get("/me", auth_token="fresh", auth_scheme=AuthScheme.API_KEY)

        assert handler.requests[0].headers.get_list("x-api-key") == ["fresh"]

    async def test_custom_api_key_header(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}), api_key_header="X-Key")

        await client.get("/me", auth_token="k", auth_scheme=AuthScheme.API_KEY)

        assert handler.requests[0].headers["x-key"] == "k"
        assert "x-api-key" not in handler.requests[0].headers

    async def test_auth_overrides_extra_authorization_header(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get(
            "/me",
            auth_token="abc",
            auth_scheme=AuthScheme.BEARER,
            extra_headers={"Authorization": "Bearer polluted"},
        )

        assert handler.requests[0].headers.get_list("authorization") == ["Bearer abc"]

    async def test_blank_token_adds_no_auth(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        await client.get("/me", auth_token="  ", auth_scheme=AuthScheme.BEARER)

        assert "authorization" not in handler.requests[0].headers

    async def test_each_attempt_builds_a_fresh_request(self, make_client):
        client, handler = make_client(
            httpx.Response(503), httpx.Response(503), httpx.Response(201, json={})
        )

        await client.post(
            "/orders", {"amount": 10}, auth_token="abc", auth_scheme=AuthScheme.BEARER
        )

        assert handler.calls == 3
        assert len({id(r) for r in handler.requests}) == 3
        for request in handler.requests:
            assert request.headers.get_list("authorization") == ["Bearer abc"]
            assert json.loads(request.content) == {"amount": 10}


@pytest.mark.asyncio
class TestFailures:
    """Failures are captured in the envelope, never raised."""

    async def test_non_2xx_populates_error_data(self, make_client):
        client, handler = make_client(httpx.Response(404, text='{"error":"not found"}'))

        result = await client.get("/users/99", response_type=User)

        assert result.success is False
        assert result.status_code == 404
        assert result.error_message == "HTTP Error 404"
        assert result.error_data == '{"error":"not found"}'
        assert result.data is None
        assert handler.calls == 1

    async def test_redirect_is_not_followed(self, make_client):
        client, _ = make_client(
            httpx.Response(302, headers={"Location": "https://api.example.com/elsewhere"})
        )

        result = await client.get("/moved")

        assert not result.success
        assert result.status_code == 302

    async def test_retries_throttled_post_until_success(self, make_client):
        """429, 429, 201 with three attempts ends in success."""
        client, handler = make_client(
            httpx.Response(429), httpx.Response(429), httpx.Response(201, json={"id": 5})
        )

        result = await client.post("/orders", {"amount": 10})

        assert result.success is True
        assert result.status_code == 201
        assert result.data == {"id": 5}
        assert handler.calls == 3

    @pytest.mark.parametrize("max_attempts", [1, 2, 4])
    async def test_exactly_max_attempts_on_retryable_status(self, make_client, max_attempts):
        policy = RetryPolicy(max_attempts=max_attempts, base_delay=0.0, jitter=0.0)
        client, handler = make_client(
            httpx.Response(503, text="unavailable"), retry_policy=policy
        )

        result = await client.get("/flaky")

        assert handler.calls == max_attempts
        assert result.success is False
        assert result.status_code == 503
        assert result.error_data == "unavailable"

    async def test_final_envelope_reflects_last_attempt(self, make_client):
        client, _ = make_client(
            httpx.Response(503, text="first"),
            httpx.Response(502, text="second"),
            httpx.Response(504, text="third"),
        )

        result = await client.get("/flaky")

        assert result.status_code == 504
        assert result.error_data == "third"

    async def test_transport_error_is_retried_then_reported(self, make_client):
        client, handler = make_client(httpx.ConnectError("connection refused"))

        result = await client.get("/down")

        assert handler.calls == 3
        assert result.success is False
        assert result.status_code == 0
        assert result.error_message == "connection refused"

    async def test_transport_error_then_success(self, make_client):
        client, handler = make_client(
            httpx.ReadError("reset"), httpx.Response(200, json={"ok": True})
        )

        result = await client.get("/recovers")

        assert result.success
        assert handler.calls == 2

    async def test_unexpected_exception_is_terminal(self, make_client):
        client, handler = make_client(RuntimeError("handler exploded"))

        result = await client.get("/broken")

        assert handler.calls == 1
        assert result.success is False
        assert result.error_message == "handler exploded"

    async def test_decode_failure_is_captured(self, make_client):
        client, _ = make_client(httpx.Response(200, text="not json"))

        result = await client.get("/users/1", response_type=User)

        assert result.success is False
        assert result.status_code == 200
        assert result.error_message
        assert result.data is None

    async def test_schema_mismatch_is_captured(self, make_client):
        client, _ = make_client(httpx.Response(200, json={"id": "x"}))

        result = await client.get("/users/1", response_type=User)

        assert result.success is False
        assert "name" in result.error_message

    async def test_unserializable_payload_is_captured(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        result = await client.post("/orders", object())

        assert result.success is False
        assert handler.calls == 0

    async def test_timeout_when_transport_never_responds(self, make_client):
        async def never(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        client, handler = make_client(
            never, timeout=0.05, retry_policy=RetryPolicy.no_retry()
        )

        result = await client.get("/slow")

        assert result.success is False
        assert "timeout" in result.error_message.lower()
        assert result.is_timeout
        assert result.status_code == 0
        assert handler.calls == 1

    async def test_timeouts_are_retried(self, make_client):
        calls = {"n": 0}

        async def slow_then_fast(request):
            calls["n"] += 1
            if calls["n"] == 1:
                await asyncio.sleep(10)
            return httpx.Response(200, json={"ok": True})

        client, handler = make_client(slow_then_fast, timeout=0.05)

        result = await client.get("/eventually")

        assert result.success
        assert handler.calls == 2

    async def test_httpx_timeout_exception_reported_as_timeout(self, make_client):
        client, _ = make_client(
            httpx.ReadTimeout("read timed out"), retry_policy=RetryPolicy.no_retry()
        )

        result = await client.get("/slow")

        assert result.is_timeout
        assert "read timed out" in result.error_message


@pytest.mark.asyncio
class TestCancellation:
    """Caller cancellation yields a cancelled envelope, never an exception."""

    async def test_cancel_before_send(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))
        token = CancellationToken()
        token.cancel()

        result = await client.get("/users", cancellation=token)

        assert result.is_cancelled
        assert result.error_message == "Request cancelled"
        assert handler.calls == 0
        # The attempt still counts as a send for the configuration lock
        assert client.has_sent_requests

    async def test_cancel_during_send_performs_no_retry(self, make_client):
        async def hang(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        client, handler = make_client(hang)
        token = CancellationToken()
        token.cancel_after(0.05)

        result = await client.get("/hang", cancellation=token)

        assert result.is_cancelled
        assert result.status_code == 0
        assert handler.calls == 1

    async def test_cancel_during_retry_delay_takes_precedence(self, make_client):
        policy = RetryPolicy(max_attempts=3, base_delay=10.0, jitter=0.0)
        client, handler = make_client(httpx.Response(503), retry_policy=policy)
        token = CancellationToken()
        token.cancel_after(0.05)

        result = await client.get("/flaky", cancellation=token)

        assert result.is_cancelled
        assert handler.calls == 1

    async def test_cancellation_is_per_call(self, make_client):
        async def slow(request):
            await asyncio.sleep(0.1)
            return httpx.Response(200, json={"ok": True})

        client, _ = make_client(slow)
        token = CancellationToken()
        token.cancel_after(0.02)

        cancelled, completed = await asyncio.gather(
            client.get("/a", cancellation=token),
            client.get("/b"),
        )

        assert cancelled.is_cancelled
        assert completed.success
        assert completed.data == {"ok": True}

    async def test_task_cancellation_propagates(self, make_client):
        async def hang(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        client, _ = make_client(hang)
        task = asyncio.ensure_future(client.get("/hang"))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
class TestStructuralErrors:
    """Programmer errors are raised, not enveloped."""

    async def test_relative_target_without_base_address(self, make_client):
        client, handler = make_client(httpx.Response(200), base_address=None)

        with pytest.raises(MissingBaseAddressError) as exc_info:
            await client.get("/users/1")

        assert exc_info.value.target == "/users/1"
        assert handler.calls == 0
        assert client.has_sent_requests

    async def test_get_without_target_or_base_address(self, make_client):
        client, _ = make_client(httpx.Response(200), base_address=None)

        with pytest.raises(MissingBaseAddressError):
            await client.get()

    async def test_unsupported_method(self, make_client):
        client, _ = make_client(httpx.Response(200))

        with pytest.raises(ValidationError):
            await client.send("TRACE", "/x")

    async def test_lowercase_method_string_accepted(self, make_client):
        client, handler = make_client(httpx.Response(200, json={}))

        result = await client.send("get", "/x")

        assert result.success
        assert handler.requests[0].method == "GET"

    async def test_send_after_release(self, make_client):
        client, _ = make_client(httpx.Response(200))
        await client.release()

        with pytest.raises(ClientReleasedError):
            await client.get("/users")


@pytest.mark.asyncio
class TestLifecycle:
    """Ownership and release of the underlying HTTP client."""

    async def test_owned_client_closed_on_release(self, make_client):
        client, _ = make_client(httpx.Response(200))

        await client.release()
        await client.release()

        assert client.is_released
        assert client._http_client.is_closed

    async def test_injected_client_left_open(self):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        )
        client = ApiClient(base_address="https://api.example.com", http_client=http_client)

        result = await client.get("/ping")
        await client.release()

        assert result.success
        assert not http_client.is_closed
        await http_client.aclose()

    async def test_injected_client_closed_when_owned(self):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        )
        client = ApiClient(http_client=http_client, owns_http_client=True)

        await client.release()

        assert http_client.is_closed

    async def test_context_manager_releases(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": 1}))
        async with ApiClient(base_address="https://api.example.com", transport=transport) as client:
            result = await client.get("/ping")

        assert result.data == {"ok": 1}
        assert client.is_released

    async def test_http_client_and_transport_are_exclusive(self):
        http_client = httpx.AsyncClient()
        with pytest.raises(ValidationError):
            ApiClient(http_client=http_client, transport=httpx.MockTransport(lambda r: None))
        await http_client.aclose()

    async def test_concurrent_calls_share_one_client(self, make_client):
        client, handler = make_client(httpx.Response(200, json={"ok": True}))

        results = await asyncio.gather(*(client.get(f"/items/{i}") for i in range(10)))

        assert all(r.success for r in results)
        assert handler.calls == 10
        paths = sorted(r.url.path for r in handler.requests)
        assert paths == sorted(f"/items/{i}" for i in range(10))

    async def test_injected_logger_is_used(self, make_client, caplog):
        custom = logging.getLogger("tests.custom_client")
        client, _ = make_client(RuntimeError("boom"), logger=custom)

        with caplog.at_level(logging.ERROR, logger="tests.custom_client"):
            await client.get("/x")

        assert any(r.name == "tests.custom_client" for r in caplog.records)
