"""Structured exception classes for the REST API client.

Only structural errors (programmer misuse) escape :meth:`ApiClient.send`.
Transport, HTTP and decode failures are folded into the response envelope;
the internal signal exceptions at the bottom of this module never reach
callers.
"""

import json
from typing import Any, Dict, Optional


class RestApiClientError(Exception):
    """Base exception for all REST API client errors.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict())


class ConfigurationError(RestApiClientError):
    """Raised for configuration-related errors.

    :param message: Description of the configuration error
    :param setting: Optional name of the problematic setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        """Initialize configuration error with message and optional setting."""
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)
        self.setting = setting


class ConfigurationLockedError(ConfigurationError):
    """Raised when a client setting is changed after the first request.

    Once any request has been attempted the base address, timeout and
    default headers are frozen for the lifetime of the client.

    :param setting: Name of the setting the caller tried to change
    """

    def __init__(self, setting: str):
        """Initialize locked error naming the targeted setting."""
        super().__init__(
            f"Cannot change '{setting}' after the client has started sending requests",
            setting=setting,
        )
        self.code = "CONFIGURATION_LOCKED"


class MissingBaseAddressError(ConfigurationError):
    """Raised when a relative target is used without a base address.

    :param target: The relative target that could not be resolved
    """

    def __init__(self, target: Optional[str] = None):
        """Initialize missing base address error with the offending target."""
        if target:
            message = f"Relative target '{target}' requires a base address"
        else:
            message = "This call requires a base address to be configured"
        super().__init__(message, setting="base_address")
        self.code = "MISSING_BASE_ADDRESS"
        self.target = target


class ClientReleasedError(RestApiClientError):
    """Raised when a released client is used again."""

    def __init__(self, operation: Optional[str] = None):
        """Initialize released error with the attempted operation."""
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(
            message="The client has been released and can no longer be used",
            code="CLIENT_RELEASED",
            details=details,
        )


class ValidationError(RestApiClientError):
    """Raised when validation fails.

    :param message: Description of the validation error
    :param field: Optional name of the field that failed validation
    :param value: Optional value that caused the validation failure
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
    ):
        """Initialize validation error with message and optional field/value."""
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)
        self.field = field


class RequestCancelledError(RestApiClientError):
    """Signals that the caller's cancellation token fired.

    Raised by :func:`run_cancellable` and converted into a cancelled
    envelope by the dispatcher.
    """

    def __init__(self, stage: Optional[str] = None):
        """Initialize cancellation signal with the interrupted stage."""
        details = {}
        if stage:
            details["stage"] = stage
        super().__init__(
            message="Request cancelled", code="REQUEST_CANCELLED", details=details
        )


class AttemptTimeoutError(RestApiClientError):
    """Raised when a single attempt exceeds the configured timeout.

    :param timeout: The timeout in seconds that was exceeded
    """

    def __init__(self, timeout: float):
        """Initialize timeout error with the exceeded timeout."""
        super().__init__(
            message=f"Request timed out after {timeout:g} seconds",
            code="TIMEOUT_ERROR",
            details={"timeout": timeout},
        )
        self.timeout = timeout
