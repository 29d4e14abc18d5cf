"""REST API client models package.

Pydantic and dataclass models shared by the dispatcher and its callers:
the uniform response envelope and the per-call descriptor.
"""

from .call import CallDescriptor, HttpMethod
from .envelope import (
    CANCELLED_MESSAGE,
    NO_STATUS,
    TIMEOUT_MESSAGE,
    ApiResponse,
)

__all__ = [
    "ApiResponse",
    "CallDescriptor",
    "HttpMethod",
    "CANCELLED_MESSAGE",
    "TIMEOUT_MESSAGE",
    "NO_STATUS",
]
