"""Configuration lock for client settings.

The guard is a two-state machine, ``OPEN -> LOCKED``. The transition
happens when the first request is attempted and never reverses. Setters
and the transition share one mutex, so a setter racing the first send
either lands before the lock or fails loudly; it is never silently lost.
"""

import logging
import threading
from enum import Enum
from typing import Callable, TypeVar

from ...exceptions import ConfigurationLockedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuardState(str, Enum):
    """States of the configuration guard."""

    OPEN = "open"
    LOCKED = "locked"


class ConfigurationGuard:
    """Serializes configuration changes against the first send."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = GuardState.OPEN

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state is GuardState.LOCKED

    def mark_in_use(self) -> None:
        """Lock the configuration. Safe to call on every send."""
        if self._state is GuardState.LOCKED:
            return
        with self._lock:
            if self._state is GuardState.OPEN:
                self._state = GuardState.LOCKED
                logger.debug("Client configuration locked")

    def mutate(self, setting: str, apply: Callable[[], T]) -> T:
        """Apply a configuration change while still open.

        :param setting: Name of the targeted setting, reported on failure
        :param apply: Callable performing the change
        :return: Whatever ``apply`` returns
        :raises ConfigurationLockedError: When the configuration is locked
        """
        with self._lock:
            if self._state is GuardState.LOCKED:
                raise ConfigurationLockedError(setting)
            return apply()
