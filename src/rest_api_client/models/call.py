"""Per-call descriptor models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

import httpx

from ..auth.authenticator import AuthScheme
from ..utils.http.cancellation import CancellationToken


class HttpMethod(str, Enum):
    """HTTP methods supported by the client."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"

    @property
    def allows_body(self) -> bool:
        """Whether a payload is sent with this method."""
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


@dataclass(frozen=True)
class CallDescriptor:
    """Everything needed to perform one logical call.

    Created per invocation and discarded once the envelope is produced.
    ``target`` of ``None`` addresses the base address itself.
    """

    method: HttpMethod
    target: Optional[Union[str, httpx.URL]] = None
    payload: Any = None
    auth_token: Optional[str] = None
    auth_scheme: AuthScheme = AuthScheme.NONE
    extra_headers: Optional[Mapping[str, str]] = field(default=None, hash=False)
    cancellation: Optional[CancellationToken] = field(default=None, compare=False)

    @property
    def has_body(self) -> bool:
        """Whether the payload will be attached to the request."""
        return self.payload is not None and self.method.allows_body
