"""REST API client package.

This package provides a reusable async HTTP client facade for JSON REST
APIs. Calls are authenticated, retried with exponential backoff on
transient failures, and always answered with a uniform
:class:`ApiResponse` envelope.

:var __version__: Current package version
:type __version__: str
"""

from .auth import AuthScheme, apply_auth
from .config import ClientSettings
from .exceptions import (
    ClientReleasedError,
    ConfigurationError,
    ConfigurationLockedError,
    MissingBaseAddressError,
    RestApiClientError,
    ValidationError,
)
from .models import ApiResponse, HttpMethod
from .utils.codec import BodyCodec, Decoded, JsonBodyCodec, RawText
from .utils.http import CancellationToken, RetryPolicy, TransportPool
from .utils.http_client import ApiClient
from .utils.security import setup_secure_logging

__version__ = "0.1.0"

__all__ = [
    "ApiClient",
    "ApiResponse",
    "AuthScheme",
    "BodyCodec",
    "CancellationToken",
    "ClientReleasedError",
    "ClientSettings",
    "ConfigurationError",
    "ConfigurationLockedError",
    "Decoded",
    "HttpMethod",
    "JsonBodyCodec",
    "MissingBaseAddressError",
    "RawText",
    "RestApiClientError",
    "RetryPolicy",
    "TransportPool",
    "ValidationError",
    "apply_auth",
    "setup_secure_logging",
]
