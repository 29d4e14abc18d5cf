"""HTTP utilities public API (barrel module).

This package provides:
- Retry policy with exponential, jittered backoff and typed attempt outcomes
- Configuration guard freezing client settings after first use
- Cooperative per-call cancellation
- Explicit shared connection pools and timeout/limit helpers

Recommended import pattern for consumers:
    from rest_api_client.utils.http import RetryPolicy, CancellationToken
"""

from .cancellation import CancellationToken, run_cancellable
from .client_manager import (
    TransportPool,
    create_http_client,
    create_limits,
    create_timeout,
)
from .guard import ConfigurationGuard, GuardState
from .retry import (
    AttemptOutcome,
    OutcomeKind,
    RetryContext,
    RetryPolicy,
    parse_retry_after,
)

__all__ = [
    "AttemptOutcome",
    "CancellationToken",
    "ConfigurationGuard",
    "GuardState",
    "OutcomeKind",
    "RetryContext",
    "RetryPolicy",
    "TransportPool",
    "create_http_client",
    "create_limits",
    "create_timeout",
    "parse_retry_after",
    "run_cancellable",
]
