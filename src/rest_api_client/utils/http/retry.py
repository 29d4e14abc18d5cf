"""Retry policy for supervised request execution.

The dispatcher hands the policy a per-attempt step that always returns an
:class:`AttemptOutcome` instead of raising. The policy reads the outcome
kind to decide between stopping and retrying after a backoff delay, so
retryability never depends on exception hierarchies leaking out of the
attempt.

Delays grow exponentially (``base_delay * backoff_factor ** n``), are
capped at ``max_delay`` and carry multiplicative jitter so that
concurrent callers do not retry in lockstep. A ``Retry-After`` header on
a throttled or unavailable response overrides the computed delay.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional

import httpx

from ...exceptions import AttemptTimeoutError, RequestCancelledError, ValidationError
from .cancellation import CancellationToken, run_cancellable

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUS_CODES: FrozenSet[int] = frozenset({408, 429, 502, 503, 504})
RETRY_AFTER_STATUS_CODES: FrozenSet[int] = frozenset({429, 503})


class OutcomeKind(str, Enum):
    """Classification of a single attempt."""

    OK = "ok"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"
    CANCELLED = "cancelled"


@dataclass
class AttemptOutcome:
    """Result of one attempt: a response, an error, or both absent.

    :param kind: How the attempt was classified
    :param response: Response received, if the exchange completed
    :param error: Exception raised by the attempt, if any
    """

    kind: OutcomeKind
    response: Optional[httpx.Response] = None
    error: Optional[BaseException] = None

    async def aclose(self) -> None:
        """Release the response stream held by this outcome."""
        if self.response is not None:
            await self.response.aclose()


@dataclass
class RetryContext:
    """Per-execution bookkeeping passed to every attempt."""

    attempt: int = 0
    delay: float = 0.0
    elapsed_delay: float = 0.0
    last_outcome: Optional[AttemptOutcome] = None


AttemptFn = Callable[[RetryContext], Awaitable[AttemptOutcome]]


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Parse Retry-After header from response.

    Supports both delta-seconds and HTTP-date formats.
    """
    retry_after = response.headers.get("retry-after", "").strip()
    if not retry_after:
        return None

    try:
        if retry_after.isdigit():
            return float(retry_after)

        retry_date = parsedate_to_datetime(retry_after)
        delay = (retry_date - datetime.now(retry_date.tzinfo)).total_seconds()
        return max(0.0, delay)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse Retry-After header '{retry_after}': {e}")
        return None


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    :param max_attempts: Maximum number of attempts, including the first
    :type max_attempts: int
    :param base_delay: Delay in seconds before the first retry
    :type base_delay: float
    :param backoff_factor: Multiplier applied to the delay on each retry
    :type backoff_factor: float
    :param jitter: Relative jitter; the delay is scaled by a random factor
                   in ``[1 - jitter, 1 + jitter]``
    :type jitter: float
    :param max_delay: Upper bound for any single delay in seconds
    :type max_delay: float
    :param retry_status_codes: Status codes treated as transient
    :type retry_status_codes: Iterable[int]
    :param retry_server_errors: Also retry every other 5xx status
    :type retry_server_errors: bool
    :param respect_retry_after: Honor ``Retry-After`` on 429/503 responses
    :type respect_retry_after: bool
    """

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        jitter: float = 0.2,
        max_delay: float = 30.0,
        retry_status_codes: Iterable[int] = DEFAULT_RETRY_STATUS_CODES,
        retry_server_errors: bool = True,
        respect_retry_after: bool = True,
    ):
        if max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1", field="max_attempts", value=max_attempts
            )
        if base_delay < 0 or max_delay < 0:
            raise ValidationError("Retry delays cannot be negative", field="base_delay")
        if backoff_factor < 1:
            raise ValidationError(
                "backoff_factor must be >= 1", field="backoff_factor", value=backoff_factor
            )
        if not 0 <= jitter < 1:
            raise ValidationError("jitter must be in [0, 1)", field="jitter", value=jitter)

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.max_delay = max_delay
        self.retry_status_codes = frozenset(retry_status_codes)
        self.retry_server_errors = retry_server_errors
        self.respect_retry_after = respect_retry_after

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """Policy that performs a single attempt."""
        return cls(max_attempts=1, base_delay=0.0, jitter=0.0)

    def should_retry_status(self, status_code: int) -> bool:
        """Determine if status code is retryable."""
        if status_code in self.retry_status_codes:
            return True
        return self.retry_server_errors and 500 <= status_code < 600

    def classify_response(self, response: httpx.Response) -> OutcomeKind:
        """Classify a completed exchange."""
        if response.is_success:
            return OutcomeKind.OK
        if self.should_retry_status(response.status_code):
            return OutcomeKind.RETRYABLE
        return OutcomeKind.TERMINAL

    def classify_exception(self, exc: BaseException) -> OutcomeKind:
        """Classify an exception raised while sending."""
        if isinstance(exc, RequestCancelledError):
            return OutcomeKind.CANCELLED
        # TimeoutException is a TransportError
        if isinstance(exc, (httpx.TransportError, AttemptTimeoutError)):
            return OutcomeKind.RETRYABLE
        return OutcomeKind.TERMINAL

    def outcome_for_response(self, response: httpx.Response) -> AttemptOutcome:
        return AttemptOutcome(self.classify_response(response), response=response)

    def outcome_for_exception(self, exc: BaseException) -> AttemptOutcome:
        return AttemptOutcome(self.classify_exception(exc), error=exc)

    def compute_delay(self, retry_index: int) -> float:
        """Backoff delay before retry number ``retry_index`` (0-based)."""
        delay = self.base_delay * (self.backoff_factor**retry_index)
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return min(self.max_delay, delay)

    def next_delay(self, retry_index: int, outcome: AttemptOutcome) -> float:
        """Delay before the next attempt, honoring Retry-After when present."""
        response = outcome.response
        if (
            self.respect_retry_after
            and response is not None
            and response.status_code in RETRY_AFTER_STATUS_CODES
        ):
            retry_after = parse_retry_after(response)
            if retry_after is not None:
                return min(retry_after, self.max_delay)
        return self.compute_delay(retry_index)

    async def execute(
        self,
        attempt: AttemptFn,
        cancellation: Optional[CancellationToken] = None,
    ) -> AttemptOutcome:
        """Run ``attempt`` until it stops being retryable.

        Attempts are strictly sequential. Discarded outcomes are closed
        before the delay starts. A cancellation observed during the delay
        ends the execution with a cancelled outcome.

        :param attempt: Per-attempt step returning a classified outcome
        :param cancellation: Optional cancellation token for the call
        :return: The last outcome
        """
        context = RetryContext()

        while True:
            context.attempt += 1
            outcome = await attempt(context)
            context.last_outcome = outcome

            if outcome.kind is not OutcomeKind.RETRYABLE:
                if context.attempt > 1 and outcome.kind is OutcomeKind.OK:
                    logger.info(f"Success after {context.attempt} attempts")
                return outcome

            if context.attempt >= self.max_attempts:
                logger.warning(
                    f"Request failed after {context.attempt} attempts: {_describe(outcome)}"
                )
                return outcome

            delay = self.next_delay(context.attempt - 1, outcome)
            await outcome.aclose()
            logger.info(
                f"Retry {context.attempt}/{self.max_attempts - 1} after {delay:.2f}s "
                f"({_describe(outcome)})"
            )

            try:
                await run_cancellable(asyncio.sleep(delay), cancellation, stage="retry_delay")
            except RequestCancelledError as exc:
                return AttemptOutcome(OutcomeKind.CANCELLED, error=exc)

            context.delay = delay
            context.elapsed_delay += delay


def _describe(outcome: AttemptOutcome) -> str:
    if outcome.response is not None:
        return f"HTTP {outcome.response.status_code}"
    if outcome.error is not None:
        return f"{type(outcome.error).__name__}: {outcome.error}"
    return outcome.kind.value
