"""
Clock sources for FlowGuard.

All window arithmetic in FlowGuard is done in integer milliseconds relative to
values returned by a Clock, never to timestamps supplied by callers.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Union


class Clock(ABC):
    """Wall-clock time source in epoch milliseconds."""

    @abstractmethod
    def now(self) -> int:
        """Return the current time in milliseconds."""
        pass


class SystemClock(Clock):
    """Clock backed by the system wall clock."""

    def now(self) -> int:
        return int(time.time() * 1000)


class ManualClock(Clock):
    """
    Settable clock for deterministic replays and tests.

    Example:
        clock = ManualClock(start=0)
        clock.advance(30000)
        assert clock.now() == 30000
    """

    def __init__(self, start: int = 0):
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, value: int) -> None:
        """Jump to an absolute time (may go backwards)."""
        with self._lock:
            self._now = int(value)

    def advance(self, delta: Union[int, float, timedelta]) -> int:
        """Move the clock forward by milliseconds or a timedelta."""
        if isinstance(delta, timedelta):
            delta = to_millis(delta)
        with self._lock:
            self._now += int(delta)
            return self._now


def to_millis(value: Union[int, float, timedelta]) -> int:
    """Convert a timedelta (or a plain millisecond count) to integer milliseconds."""
    if isinstance(value, timedelta):
        return int(value.total_seconds() * 1000)
    return int(value)


_default_clock = SystemClock()


def default_clock() -> Clock:
    """Get the process-wide system clock."""
    return _default_clock
