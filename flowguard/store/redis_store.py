"""
Redis-backed store for FlowGuard.

Shares circuit, rate-limit and lockout state across every handler instance.
The sliding-window primitive runs as a single Lua script so the
remove/count/insert sequence is atomic across processes, and timestamps come
from the Redis server clock (TIME) rather than from the calling host.
"""

import json
import logging
import uuid
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError, RedisError, TimeoutError as RedisTimeoutError

from ..common.clock import Clock
from .types import KeyValueStore, StorageConnectionError, StorageError, WindowSnapshot


logger = logging.getLogger(__name__)


SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local window = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
local record = tonumber(ARGV[3])
local now = tonumber(ARGV[4])
local member = ARGV[5]

if tonumber(ARGV[6]) == 1 then
    local t = redis.call('TIME')
    now = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)
end

local window_start = now - window
local horizon = now + window
local count

if record == 1 then
    -- Aged-out entries and entries from a skewed future clock
    redis.call('ZREMRANGEBYSCORE', key, '-inf', window_start)
    redis.call('ZREMRANGEBYSCORE', key, '(' .. horizon, '+inf')
    count = redis.call('ZCARD', key)
else
    count = redis.call('ZCOUNT', key, '(' .. window_start, horizon)
end

local admitted = 0
if count < limit then
    admitted = 1
    if record == 1 then
        redis.call('ZADD', key, now, now .. ':' .. member)
        redis.call('PEXPIRE', key, window)
    end
end

local oldest = -1
local first = redis.call('ZRANGEBYSCORE', key, '(' .. window_start, horizon, 'WITHSCORES', 'LIMIT', 0, 1)
if #first > 0 then
    oldest = tonumber(first[2])
end

return {admitted, count, oldest, now}
"""


def _storage_error(operation: str, key: str, error: BaseException) -> StorageError:
    if isinstance(error, (RedisConnectionError, RedisTimeoutError, OSError)):
        return StorageConnectionError(operation, key, str(error), error)
    return StorageError(operation, key, str(error), error)


class RedisStore(KeyValueStore):
    """
    Key/value store on redis.asyncio.

    Values are JSON-encoded strings. Every key is prefixed with ``key_prefix``.
    Any Redis or socket failure surfaces as StorageError.
    """

    def __init__(self, redis_client: Any = None, url: Optional[str] = None,
                 key_prefix: str = "flowguard:", use_server_time: bool = True,
                 clock: Optional[Clock] = None):
        """
        Initialize the Redis store.

        Args:
            redis_client: Existing redis.asyncio client (takes precedence over url)
            url: Redis connection URL, e.g. redis://localhost:6379/0
            key_prefix: Prefix applied to every key
            use_server_time: Use the Redis server clock for window timestamps
            clock: Clock used when use_server_time is False
        """
        super().__init__(clock)
        if redis_client is None:
            redis_client = redis.from_url(url) if url else redis.Redis()
        self.client = redis_client
        self.key_prefix = key_prefix
        self.use_server_time = use_server_time
        self._script_sha: Optional[str] = None

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._key(key))
        except (RedisError, OSError) as e:
            raise _storage_error("get", key, e) from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError("get", key, f"undecodable value: {e}", e) from e

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        payload = json.dumps(value)
        try:
            if ttl_ms is not None:
                if ttl_ms <= 0:
                    await self.client.delete(self._key(key))
                    return
                await self.client.set(self._key(key), payload, px=int(ttl_ms))
            else:
                await self.client.set(self._key(key), payload)
        except (RedisError, OSError) as e:
            raise _storage_error("set", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            removed = await self.client.delete(self._key(key))
        except (RedisError, OSError) as e:
            raise _storage_error("delete", key, e) from e
        return bool(removed)

    async def _ensure_script_loaded(self) -> str:
        """Ensure the Lua script is loaded into Redis."""
        if self._script_sha is None:
            self._script_sha = await self.client.script_load(SLIDING_WINDOW_SCRIPT)
        return self._script_sha

    async def sliding_window(self, key: str, window_ms: int, limit: int,
                             record: bool = True) -> WindowSnapshot:
        args = [
            int(window_ms),
            int(limit),
            1 if record else 0,
            self.clock.now(),
            uuid.uuid4().hex,
            1 if self.use_server_time else 0,
        ]
        try:
            sha = await self._ensure_script_loaded()
            try:
                result = await self.client.evalsha(sha, 1, self._key(key), *args)
            except NoScriptError:
                # Script cache flushed on the server (restart or SCRIPT FLUSH)
                self._script_sha = None
                sha = await self._ensure_script_loaded()
                result = await self.client.evalsha(sha, 1, self._key(key), *args)
        except (RedisError, OSError) as e:
            raise _storage_error("sliding_window", key, e) from e

        admitted, count, oldest, now = (int(v) for v in result)
        return WindowSnapshot(
            admitted=bool(admitted),
            count=count,
            oldest=None if oldest < 0 else oldest,
            now=now,
        )

    async def ping(self) -> bool:
        try:
            result = await self.client.ping()
        except (RedisError, OSError) as e:
            raise _storage_error("ping", "", e) from e
        logger.info(f"Connected to Redis (prefix={self.key_prefix!r})")
        return bool(result)

    async def close(self) -> None:
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()

