"""Log sanitization and secure logging setup.

The client logs request targets and headers at debug level. Everything
passing through these helpers has credentials redacted first: bearer and
basic tokens, JWTs, API keys in headers and secrets in query strings.
"""

import logging
import re
import sys
from typing import Any, Dict, Mapping

# Patterns for sensitive data detection
SENSITIVE_PATTERNS = {
    "jwt_token": re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
    "bearer_token": re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    "basic_auth": re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE),
}

# Headers that should never be logged
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "x-auth-token",
    "cookie",
    "set-cookie",
    "x-csrf-token",
    "x-access-token",
    "x-refresh-token",
}

SENSITIVE_PARAMS = (
    "token",
    "key",
    "secret",
    "password",
    "auth",
    "access_token",
    "api_key",
    "client_secret",
)


def sanitize_string(value: str) -> str:
    """Redact tokens embedded in a free-form string.

    :param value: String to sanitize
    :type value: str
    :return: String with every sensitive match replaced
    :rtype: str
    """
    if not value:
        return value
    for pattern_name, pattern in SENSITIVE_PATTERNS.items():
        value = pattern.sub(f"<{pattern_name}:REDACTED>", value)
    return value


def sanitize_headers(
    headers: Mapping[str, Any], extra_sensitive: tuple = ()
) -> Dict[str, Any]:
    """Sanitize HTTP headers for logging.

    :param headers: Header mapping (``dict`` or ``httpx.Headers``)
    :type headers: Mapping[str, Any]
    :param extra_sensitive: Additional header names to redact
    :type extra_sensitive: tuple
    :return: New dictionary with sensitive values redacted
    :rtype: Dict[str, Any]
    """
    if not headers:
        return {}
    sensitive = SENSITIVE_HEADERS | {h.lower() for h in extra_sensitive}
    sanitized: Dict[str, Any] = {}
    for key, value in headers.items():
        if key.lower() in sensitive:
            if isinstance(value, str) and value:
                sanitized[key] = f"<REDACTED:length={len(value)}>"
            else:
                sanitized[key] = "<REDACTED>"
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_url(url: str) -> str:
    """Sanitize URLs that might contain tokens or keys.

    :param url: URL to sanitize
    :type url: str
    :return: Sanitized URL with sensitive parameters redacted
    :rtype: str
    """
    if not url:
        return url
    for param in SENSITIVE_PARAMS:
        url = re.sub(rf"([?&]{param}=)[^&\s#]+", r"\1<REDACTED>", url, flags=re.IGNORECASE)
    return url


class SanitizingFormatter(logging.Formatter):
    """Formatter that automatically sanitizes sensitive data.

    The message is rendered with its arguments first, then redacted, so
    tokens passed as ``%s`` arguments are caught as well.
    """

    def format(self, record: logging.LogRecord) -> str:
        try:
            record.msg = sanitize_string(record.getMessage())
            record.args = None
        except (TypeError, ValueError) as e:
            print(f"Warning: Failed to sanitize log record: {e}", file=sys.stderr)
        return super().format(record)


# Global flag to track if logging has been set up
_LOGGING_CONFIGURED = False


def setup_secure_logging(level: str = "INFO") -> None:
    """Set up root logging with automatic sanitization.

    Safe to call more than once; only the first call installs handlers.

    :param level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    :type level: str
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping duplicate setup"
        )
        return

    formatter = SanitizingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    # httpx logs full request lines at INFO; keep them out unless debugging
    if level.upper() != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
