"""
In-memory store implementation for FlowGuard.
Provides a process-local storage backend for development, tests and the rate
limiter's degraded-mode fallback.
"""

import asyncio
import copy
import logging
from typing import Any, Dict, Optional, Tuple

from ..common.clock import Clock
from .types import KeyValueStore, StorageError, WindowSnapshot, evaluate_window


logger = logging.getLogger(__name__)


class MemoryStore(KeyValueStore):
    """
    In-memory key/value store.

    Expiry is evaluated against the store's own clock, so a ManualClock drives
    TTLs deterministically. The sliding-window primitive holds an asyncio.Lock
    for the whole remove/count/insert sequence and is therefore atomic within
    one process (but not across processes).

    Note: All data is lost when the process terminates.
    """

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        # key -> (value, expires_at_ms or None)
        self._data: Dict[str, Tuple[Any, Optional[int]]] = {}
        self._lock = asyncio.Lock()
        self._closed = False

        self._operations_count = 0

    def _check_open(self, operation: str, key: str) -> None:
        if self._closed:
            raise StorageError(operation, key, "store is closed")

    def _read(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock.now() >= expires_at:
            del self._data[key]
            return None
        return value

    def _write(self, key: str, value: Any, ttl_ms: Optional[int]) -> None:
        expires_at = self.clock.now() + int(ttl_ms) if ttl_ms is not None else None
        self._data[key] = (copy.deepcopy(value), expires_at)

    async def get(self, key: str) -> Optional[Any]:
        self._check_open("get", key)
        self._operations_count += 1
        value = self._read(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self._check_open("set", key)
        self._operations_count += 1
        if ttl_ms is not None and ttl_ms <= 0:
            self._data.pop(key, None)
            return
        self._write(key, value, ttl_ms)

    async def delete(self, key: str) -> bool:
        self._check_open("delete", key)
        self._operations_count += 1
        if self._read(key) is None:
            self._data.pop(key, None)
            return False
        del self._data[key]
        return True

    async def sliding_window(self, key: str, window_ms: int, limit: int,
                             record: bool = True) -> WindowSnapshot:
        self._check_open("sliding_window", key)
        async with self._lock:
            self._operations_count += 1
            now = self.clock.now()
            timestamps = self._read(key) or []
            retained, snapshot = evaluate_window(timestamps, now, window_ms, limit, record)
            if record and snapshot.admitted:
                self._write(key, retained, window_ms)
            elif record and key in self._data:
                # Rejections prune but keep the expiry set by the last admission.
                if retained:
                    self._data[key] = (retained, self._data[key][1])
                else:
                    del self._data[key]
            return snapshot

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True
        self._data.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self.clock.now()
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and now >= exp]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired keys")
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        return {
            "keys": len(self._data),
            "operations": self._operations_count,
            "closed": self._closed,
        }
