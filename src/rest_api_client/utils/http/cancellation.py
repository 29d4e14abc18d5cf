"""Cooperative per-call cancellation.

A :class:`CancellationToken` is handed to a single call. Every suspension
point of that call (sending, waiting between retries, reading the body)
is raced against the token through :func:`run_cancellable`; when the token
fires the in-flight work is cancelled and :class:`RequestCancelledError`
is raised for the dispatcher to turn into a cancelled envelope.

Cancelling the calling task itself is not a cooperative signal and still
propagates as :class:`asyncio.CancelledError`.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

from ...exceptions import RequestCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Signal used by a caller to abandon one in-flight call."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    def cancel_after(self, delay: float) -> None:
        """Schedule :meth:`cancel` on the running loop after ``delay`` seconds."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(delay, self.cancel)

    async def wait(self) -> None:
        await self._event.wait()


async def _discard(work: "asyncio.Future[Any]") -> None:
    """Cancel abandoned work and release whatever it may have produced."""
    work.cancel()
    await asyncio.wait({work})
    if work.cancelled():
        return
    exc = work.exception()
    if exc is not None:
        logger.debug("Abandoned work finished with %s", type(exc).__name__)
        return
    aclose = getattr(work.result(), "aclose", None)
    if aclose is not None:
        await aclose()


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
    stage: Optional[str] = None,
) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    Cancellation wins when both complete together.

    :param awaitable: Work to run
    :param token: Optional cancellation token for the call
    :param stage: Name of the interrupted stage, used in error details
    :return: The awaitable's result
    :raises RequestCancelledError: When the token fired
    """
    if token is None:
        return await awaitable

    if token.is_cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelledError(stage)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if not token.is_cancelled:
        waiter.cancel()
        return work.result()

    await _discard(work)
    raise RequestCancelledError(stage)
