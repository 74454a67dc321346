"""
Sliding-window rate limiting for FlowGuard.

Each (subject, action) pair owns a window of admitted-request timestamps at
``ratelimit:<action>:<subject>`` in the shared store. The remove/count/insert
sequence runs as the store's sliding_window primitive, which is atomic on
RedisStore and MemoryStore. When the shared store fails, checks are served
from a process-local MemoryStore and flagged as degraded.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from ..common.clock import Clock
from ..common.utils import ceil_seconds, make_key, millis_to_iso
from ..errors import ConfigurationError, RateLimitExceeded
from ..store import KeyValueStore, MemoryStore, StorageError, WindowSnapshot


logger = logging.getLogger(__name__)


MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000


@dataclass(frozen=True)
class RateLimitRule:
    """A named limit: at most ``limit`` requests per ``window_ms``."""
    action: str
    limit: int
    window_ms: int


RATE_LIMITS: Dict[str, RateLimitRule] = {
    rule.action: rule for rule in (
        # Content generation
        RateLimitRule('content_generation', 20, HOUR_MS),
        RateLimitRule('tiktok_generation', 10, HOUR_MS),
        RateLimitRule('youtube_generation', 10, HOUR_MS),

        # API operations
        RateLimitRule('schedule_create', 50, HOUR_MS),
        RateLimitRule('library_install', 50, HOUR_MS),
        RateLimitRule('marketplace_install', 30, HOUR_MS),
        RateLimitRule('integrations_connect', 20, HOUR_MS),
        RateLimitRule('campaigns_draft', 30, HOUR_MS),
        RateLimitRule('publish_post', 60, HOUR_MS),

        # Health & monitoring
        RateLimitRule('health_check', 100, MINUTE_MS),
        RateLimitRule('usage_check', 100, MINUTE_MS),

        # GDPR operations
        RateLimitRule('gdpr_export', 5, HOUR_MS),
        RateLimitRule('gdpr_delete', 3, DAY_MS),

        # Analytics
        RateLimitRule('events_ingest', 1000, MINUTE_MS),

        # Notifications and tokens
        RateLimitRule('login_notification', 10, HOUR_MS),
        RateLimitRule('token_write', 20, HOUR_MS),

        # Authentication
        RateLimitRule('magic_link', 3, MINUTE_MS),
    )
}


@dataclass
class RateLimitResult:
    """
    Outcome of one rate-limit check.

    Attributes:
        allowed: Whether the request was admitted
        remaining: Requests left in the current window
        reset_at: Epoch ms when capacity frees up (for a denial, when the
            oldest counted request leaves the window)
        limit: The limit that was applied
        degraded: True when served by the process-local fallback
        checked_at: Store time of the check, in epoch ms
    """
    allowed: bool
    remaining: int
    reset_at: int
    limit: int
    degraded: bool = False
    checked_at: int = 0

    def retry_after_ms(self, now: Optional[int] = None) -> int:
        """Milliseconds until a denied request may be retried (0 when allowed)."""
        if self.allowed:
            return 0
        now = self.checked_at if now is None else now
        return max(0, self.reset_at - now)

    def to_headers(self, now_ms: Optional[int] = None) -> Dict[str, str]:
        """Get standard rate limit headers for responses."""
        headers = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': millis_to_iso(self.reset_at),
        }
        if not self.allowed:
            headers['Retry-After'] = str(ceil_seconds(self.retry_after_ms(now_ms)))
        return headers

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'remaining': self.remaining,
            'reset_at': self.reset_at,
            'limit': self.limit,
            'degraded': self.degraded,
        }


RuleSet = Union[Mapping[str, RateLimitRule], Iterable[RateLimitRule]]


def _rules_by_action(rules: RuleSet) -> Dict[str, RateLimitRule]:
    if isinstance(rules, Mapping):
        return dict(rules)
    return {rule.action: rule for rule in rules}


class RateLimiter:
    """
    Distributed sliding-window rate limiter.

    A denial is a normal result, never an exception; use enforce() to get a
    RateLimitExceeded instead.
    """

    def __init__(self, store: KeyValueStore, fallback_store: Optional[KeyValueStore] = None,
                 clock: Optional[Clock] = None, metrics: Any = None):
        """
        Initialize the rate limiter.

        Args:
            store: Shared store holding the windows
            fallback_store: Local store used while the shared store is down
                (a fresh MemoryStore when None)
            clock: Clock for the fallback store (defaults to the store's clock)
            metrics: Optional MetricsCollector
        """
        self.store = store
        self.clock = clock or store.clock
        self.fallback_store = fallback_store or MemoryStore(clock=self.clock)
        self.metrics = metrics

    @staticmethod
    def key_for(subject: str, action: str) -> str:
        return make_key("ratelimit", action, subject)

    async def _window(self, subject: str, action: str, limit: int, window_ms: int,
                      record: bool) -> Tuple[WindowSnapshot, bool]:
        if window_ms <= 0:
            raise ConfigurationError(f"Rate limit window for '{action}' must be positive",
                                     "window_ms", window_ms)
        key = self.key_for(subject, action)
        try:
            return await self.store.sliding_window(key, window_ms, limit, record), False
        except StorageError as e:
            logger.warning(f"Rate limit store unavailable for '{action}', using local fallback: {e}")
            if self.metrics is not None:
                await self.metrics.record_rate_limit_fallback(action)
            return await self.fallback_store.sliding_window(key, window_ms, limit, record), True

    @staticmethod
    def _result(snapshot: WindowSnapshot, limit: int, window_ms: int,
                degraded: bool, consumed: bool) -> RateLimitResult:
        if snapshot.admitted:
            used = snapshot.count + (1 if consumed else 0)
            if consumed or snapshot.oldest is None:
                reset_at = snapshot.now + window_ms
            else:
                reset_at = snapshot.oldest + window_ms
            return RateLimitResult(True, max(0, limit - used), reset_at, limit, degraded, snapshot.now)

        reset_at = (snapshot.oldest if snapshot.oldest is not None else snapshot.now) + window_ms
        return RateLimitResult(False, 0, reset_at, limit, degraded, snapshot.now)

    async def check(self, subject: str, action: str, limit: int, window_ms: int) -> RateLimitResult:
        """
        Check and consume one request for (subject, action).

        Args:
            subject: Who is being limited (user id, tenant id, IP)
            action: What is being limited
            limit: Maximum requests per window (<= 0 rejects everything)
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult
        """
        snapshot, degraded = await self._window(subject, action, limit, window_ms, record=True)
        result = self._result(snapshot, limit, window_ms, degraded, consumed=True)

        if result.allowed:
            logger.debug(f"Rate limit '{action}' admitted {subject} ({result.remaining} remaining)")
        else:
            logger.debug(f"Rate limit '{action}' denied {subject} until {result.reset_at}")
        if self.metrics is not None:
            await self.metrics.record_rate_limit_decision(action, result.allowed)
        return result

    async def status(self, subject: str, action: str, limit: int, window_ms: int) -> RateLimitResult:
        """Report the current window for (subject, action) without consuming a request."""
        snapshot, degraded = await self._window(subject, action, limit, window_ms, record=False)
        return self._result(snapshot, limit, window_ms, degraded, consumed=False)

    async def clear(self, subject: str, action: str) -> bool:
        """
        Administrative reset of one window.

        Returns:
            False if the shared store could not be cleared
        """
        key = self.key_for(subject, action)
        await self.fallback_store.delete(key)
        try:
            await self.store.delete(key)
        except StorageError as e:
            logger.error(f"Failed to clear rate limit '{action}' for {subject}: {e}")
            return False
        logger.info(f"Cleared rate limit '{action}' for {subject}")
        return True

    async def check_rule(self, subject: str, rule: RateLimitRule) -> RateLimitResult:
        """Check a named rule."""
        return await self.check(subject, rule.action, rule.limit, rule.window_ms)

    async def check_many(self, subject: str, rules: RuleSet) -> Dict[str, RateLimitResult]:
        """
        Check several independent rules concurrently.

        Each rule is atomic on its own; the batch is not. A request denied by
        one rule may still have consumed capacity under another.
        """
        by_action = _rules_by_action(rules)
        results = await asyncio.gather(*(self.check_rule(subject, rule) for rule in by_action.values()))
        return dict(zip(by_action.keys(), results))

    def guard(self, action: str,
              rules: Optional[Mapping[str, RateLimitRule]] = None) -> Callable[[str], Awaitable[RateLimitResult]]:
        """
        Bind a named rule, returning ``async (subject) -> RateLimitResult``.

        Raises:
            ConfigurationError: If the action has no rule
        """
        table = RATE_LIMITS if rules is None else rules
        rule = table.get(action)
        if rule is None:
            raise ConfigurationError(f"No rate limit rule for action '{action}'", "action", action)

        async def check(subject: str) -> RateLimitResult:
            return await self.check_rule(subject, rule)
        return check

    async def enforce(self, subject: str, action: str, limit: int, window_ms: int) -> RateLimitResult:
        """
        Like check(), but raise on denial.

        Raises:
            RateLimitExceeded: If the request is denied
        """
        result = await self.check(subject, action, limit, window_ms)
        if not result.allowed:
            raise RateLimitExceeded(
                subject,
                action,
                retry_after_ms=result.retry_after_ms(),
                limit=limit,
                reset_at=result.reset_at,
            )
        return result

    async def enforce_rule(self, subject: str, rule: RateLimitRule) -> RateLimitResult:
        """Enforce a named rule."""
        return await self.enforce(subject, rule.action, rule.limit, rule.window_ms)
