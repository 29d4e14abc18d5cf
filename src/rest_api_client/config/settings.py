"""Configuration settings for the REST API client.

Settings are loaded from ``REST_API_CLIENT_*`` environment variables and
an optional ``.env`` file, and feed :meth:`ApiClient.from_settings`.
"""

from typing import Dict, List, Literal, Optional

import httpx
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..auth.authenticator import DEFAULT_API_KEY_HEADER
from ..utils.http.retry import DEFAULT_RETRY_STATUS_CODES, RetryPolicy
from ..utils.security import setup_secure_logging


class ClientSettings(BaseSettings):
    """Client settings loaded from environment variables.

    :param base_address: Base URI relative targets are resolved against
    :type base_address: Optional[str]
    :param timeout: Per-attempt timeout in seconds
    :type timeout: float
    :param default_headers: Headers sent with every request
    :type default_headers: Dict[str, str]
    :param api_key_header: Header name used by the API-key auth scheme
    :type api_key_header: str
    :param retry_max_attempts: Maximum attempts per call, first included
    :type retry_max_attempts: int
    :param retry_base_delay: Delay before the first retry in seconds
    :type retry_base_delay: float
    :param retry_backoff_factor: Exponential backoff multiplier
    :type retry_backoff_factor: float
    :param retry_jitter: Relative jitter applied to each delay
    :type retry_jitter: float
    :param retry_max_delay: Cap for a single delay in seconds
    :type retry_max_delay: float
    :param retry_status_codes: Status codes treated as transient
    :type retry_status_codes: List[int]
    :param retry_server_errors: Retry every 5xx status
    :type retry_server_errors: bool
    :param log_level: Logging level for the application
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    """

    model_config = SettingsConfigDict(
        env_prefix="REST_API_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_address: Optional[str] = Field(None, description="Base URI for relative targets")
    timeout: float = Field(30.0, gt=0, description="Per-attempt timeout in seconds")
    default_headers: Dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    api_key_header: str = Field(
        DEFAULT_API_KEY_HEADER, description="Header used by the API-key scheme"
    )

    retry_max_attempts: int = Field(4, ge=1, le=10, description="Maximum attempts")
    retry_base_delay: float = Field(1.0, ge=0, description="Initial retry delay")
    retry_backoff_factor: float = Field(2.0, ge=1, description="Backoff multiplier")
    retry_jitter: float = Field(0.2, ge=0, lt=1, description="Relative jitter")
    retry_max_delay: float = Field(30.0, ge=0, description="Maximum retry delay")
    retry_status_codes: List[int] = Field(
        default_factory=lambda: sorted(DEFAULT_RETRY_STATUS_CODES),
        description="Transient status codes",
    )
    retry_server_errors: bool = Field(True, description="Retry every 5xx status")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )

    @field_validator("base_address")
    @classmethod
    def validate_base_address(cls, v: Optional[str]) -> Optional[str]:
        """Require an absolute http(s) URI, treating blank values as unset.

        :param v: The configured base address
        :type v: Optional[str]
        :return: Normalized base address or None
        :rtype: Optional[str]
        """
        if v is None or not v.strip():
            return None
        url = httpx.URL(v.strip())
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"base_address must be an absolute http(s) URI, got '{v}'")
        return str(url)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    def configure_logging(self) -> None:
        """Install sanitizing root logging at :attr:`log_level`."""
        setup_secure_logging(self.log_level)

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy described by these settings."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            backoff_factor=self.retry_backoff_factor,
            jitter=self.retry_jitter,
            max_delay=self.retry_max_delay,
            retry_status_codes=self.retry_status_codes,
            retry_server_errors=self.retry_server_errors,
        )
