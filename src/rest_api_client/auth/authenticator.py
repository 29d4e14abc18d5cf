"""Attach authentication headers to outgoing requests.

The authenticator runs after default and per-call headers have been
merged, so it overwrites any colliding ``Authorization`` or API-key
header already present on the request.

Examples:
    >>> headers = httpx.Headers({"Accept": "application/json"})
    >>> apply_auth(headers, "abc", AuthScheme.BEARER)
    >>> headers["authorization"]
    'Bearer abc'
"""

import logging
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_HEADER = "X-API-Key"


class AuthScheme(str, Enum):
    """Authentication schemes understood by the client."""

    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api_key"


def apply_auth(
    headers: httpx.Headers,
    token: Optional[str],
    scheme: AuthScheme = AuthScheme.NONE,
    api_key_header: str = DEFAULT_API_KEY_HEADER,
) -> None:
    """Decorate request headers with credential material.

    A missing or blank token leaves the headers untouched, whatever the
    scheme. Basic tokens are expected to be base64-encoded already.

    :param headers: Request headers to mutate in place
    :type headers: httpx.Headers
    :param token: Secret to attach
    :type token: Optional[str]
    :param scheme: Authentication scheme to apply
    :type scheme: AuthScheme
    :param api_key_header: Header name used for the API-key scheme
    :type api_key_header: str
    """
    if scheme is AuthScheme.NONE or token is None or not token.strip():
        return

    if scheme is AuthScheme.BEARER:
        headers["Authorization"] = f"Bearer {token}"
    elif scheme is AuthScheme.BASIC:
        headers["Authorization"] = f"Basic {token}"
    elif scheme is AuthScheme.API_KEY:
        # __setitem__ replaces every existing value for the name
        headers[api_key_header] = token
    else:
        raise ValueError(f"Unsupported auth scheme: {scheme!r}")

    logger.debug("Applied %s authentication", scheme.value)
