"""
Storage types and interfaces for FlowGuard.

Defines the key/value store abstraction shared by the circuit breaker, the
rate limiter and the lockout state machine, plus the sliding-window primitive
the rate limiter relies on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from ..common.clock import Clock, default_clock
from ..errors import ErrorKind, FlowGuardError


class StorageStatus(Enum):
    """Status of a storage backend."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class StorageError(FlowGuardError):
    """Base class for storage-related errors."""

    kind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, operation: str, key: str = "", message: str = "",
                 cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        super().__init__(
            f"Storage error in {operation}: {message}",
            details={"operation": operation, "key": key},
            cause=cause,
        )


class StorageConnectionError(StorageError):
    """Raised when there's a connection issue with the storage backend."""
    pass


@dataclass
class WindowSnapshot:
    """
    Outcome of one sliding-window evaluation.

    Attributes:
        admitted: True if the request fits in the window (and was recorded,
            when recording was requested)
        count: Number of timestamps in the window before this request
        oldest: Oldest timestamp still in the window (ms), None if empty
        now: Timestamp the store used for this evaluation (ms)
    """
    admitted: bool
    count: int
    oldest: Optional[int]
    now: int


def evaluate_window(timestamps: List[int], now: int, window_ms: int, limit: int,
                    record: bool) -> Tuple[List[int], WindowSnapshot]:
    """
    Apply the sliding-window algorithm to a list of timestamps.

    Timestamps at or before ``now - window_ms`` have aged out. Timestamps after
    ``now + window_ms`` cannot have been written by a sane clock and are dropped
    as well so that a clock moving backwards cannot pin entries forever.

    Returns the retained timestamps (with ``now`` appended when admitted and
    recording) and the resulting snapshot.
    """
    window_start = now - window_ms
    retained = sorted(ts for ts in timestamps if window_start < ts <= now + window_ms)
    count = len(retained)
    admitted = count < limit

    if admitted and record:
        retained.append(now)
        retained.sort()

    oldest = retained[0] if retained else None
    return retained, WindowSnapshot(admitted=admitted, count=count, oldest=oldest, now=now)


class KeyValueStore(ABC):
    """
    Abstract base class for FlowGuard storage backends.

    Values are JSON-compatible (dicts, lists, numbers, strings). Expiry is given
    in milliseconds. Implementations raise StorageError when the backend is
    unreachable so that callers can choose their fallback behaviour.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or default_clock()

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value.

        Args:
            key: The key to look up

        Returns:
            The stored value, or None if absent or expired

        Raises:
            StorageError: If the backend is unavailable
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """
        Store a value with an optional expiry.

        Args:
            key: The key to write
            value: JSON-compatible value
            ttl_ms: Expiry in milliseconds (None keeps the value until deleted)

        Raises:
            StorageError: If the backend is unavailable
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if something was removed."""
        pass

    async def sliding_window(self, key: str, window_ms: int, limit: int,
                             record: bool = True) -> WindowSnapshot:
        """
        Remove aged-out timestamps, count the rest and insert now if under limit.

        This default is a plain read-then-write built on get() and set(). It is
        NOT atomic: two concurrent callers for the same key can both read the
        same count and both be admitted. Backends shared between processes
        override this with an atomic operation. With ``record=False`` nothing is
        written (peek).
        """
        now = self.clock.now()
        timestamps = await self.get(key) or []
        retained, snapshot = evaluate_window(timestamps, now, window_ms, limit, record)
        if record and snapshot.admitted:
            await self.set(key, retained, ttl_ms=window_ms)
        return snapshot

    async def ping(self) -> bool:
        """Check whether the backend is reachable."""
        return True

    async def health(self) -> StorageStatus:
        """Get backend health."""
        try:
            return StorageStatus.HEALTHY if await self.ping() else StorageStatus.UNHEALTHY
        except StorageError:
            return StorageStatus.UNHEALTHY

    async def close(self) -> None:
        """Release backend resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

