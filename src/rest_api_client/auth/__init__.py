"""Authentication module for the REST API client.

Credential material is attached to outgoing requests by a pure
decoration step selected through :class:`AuthScheme`. Acquiring or
refreshing credentials is the caller's concern.
"""

from .authenticator import DEFAULT_API_KEY_HEADER, AuthScheme, apply_auth

__all__ = [
    "AuthScheme",
    "apply_auth",
    "DEFAULT_API_KEY_HEADER",
]
