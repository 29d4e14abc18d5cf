"""Uniform response envelope returned by every client call.

Every call made through :class:`~rest_api_client.utils.http_client.ApiClient`
produces exactly one :class:`ApiResponse`, whatever the cause of a failure.
Callers therefore only ever need a single failure-handling shape.
"""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")

# Status reported when no HTTP exchange completed
NO_STATUS = 0

CANCELLED_MESSAGE = "Request cancelled"
TIMEOUT_MESSAGE = "Request timeout"


class ApiResponse(BaseModel, Generic[T]):
    """Result envelope for a single API call.

    :param success: True when a 2xx response was received and decoded
    :type success: bool
    :param data: Decoded response body, only present on success
    :type data: Optional[T]
    :param error_message: Short human-readable failure summary
    :type error_message: Optional[str]
    :param error_data: Raw response body text for non-2xx responses
    :type error_data: Optional[str]
    :param status_code: HTTP status code, ``0`` when no exchange completed
    :type status_code: int
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool = Field(False, description="Whether the call succeeded")
    data: Optional[T] = Field(None, description="Decoded response body")
    error_message: Optional[str] = Field(None, description="Failure summary")
    error_data: Optional[str] = Field(None, description="Raw error body text")
    status_code: int = Field(NO_STATUS, description="HTTP status code")

    @model_validator(mode="after")
    def check_consistency(self) -> "ApiResponse[T]":
        """Reject envelopes mixing success data with error fields."""
        if self.success and (self.error_message is not None or self.error_data is not None):
            raise ValueError("A successful response cannot carry error details")
        if not self.success and self.data is not None:
            raise ValueError("A failed response cannot carry data")
        return self

    @classmethod
    def ok(cls, data: Any = None, status_code: int = 200) -> "ApiResponse[T]":
        """Build a successful envelope."""
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def failure(
        cls,
        error_message: str,
        status_code: int = NO_STATUS,
        error_data: Optional[str] = None,
    ) -> "ApiResponse[T]":
        """Build a failed envelope."""
        return cls(
            success=False,
            error_message=error_message,
            error_data=error_data,
            status_code=status_code,
        )

    @property
    def is_cancelled(self) -> bool:
        """True when the call was cancelled by the caller."""
        return not self.success and self.error_message == CANCELLED_MESSAGE

    @property
    def is_timeout(self) -> bool:
        """True when the call failed because the timeout expired."""
        return (
            not self.success
            and self.error_message is not None
            and self.error_message.startswith(TIMEOUT_MESSAGE)
        )
