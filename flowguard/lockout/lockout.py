"""
Progressive account lockout for the authentication flow.

Each login identity has a lock record at ``lockout:<identity>``, a sliding
window of failed attempts at ``lockout-attempts:<identity>`` and a separately
persisted escalation level at ``lockout-level:<identity>``. The level outlives
failure windows and lockout cycles, and decays back to the base duration once
the decay horizon has passed since it was last set.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from ..common.clock import Clock, default_clock, to_millis
from ..common.utils import ceil_seconds, format_wait, make_key
from ..errors import ConfigurationError
from ..notify import ACCOUNT_LOCKED, Notification, Notifier, Severity, dispatch
from ..store import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


@dataclass
class LockoutPolicy:
    """
    Lockout configuration.

    Attributes:
        max_attempts: In-window failures that trigger a lockout
        challenge_threshold: In-window failures after which a secondary
            challenge (CAPTCHA) is required
        attempt_window: Window in which failures are counted
        durations: Escalating lockout durations, indexed by level
        decay_horizon: Time after which the level resets to the base duration
    """
    max_attempts: int = 5
    challenge_threshold: int = 3
    attempt_window: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    durations: Tuple[timedelta, ...] = (
        timedelta(minutes=5),
        timedelta(minutes=15),
        timedelta(hours=1),
    )
    decay_horizon: timedelta = field(default_factory=lambda: timedelta(hours=24))

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", "max_attempts", self.max_attempts)
        if not self.durations:
            raise ConfigurationError("durations must not be empty", "durations")
        self.durations = tuple(self.durations)

    @property
    def max_level(self) -> int:
        return len(self.durations) - 1

    def duration_ms(self, level: int) -> int:
        return to_millis(self.durations[min(max(level, 0), self.max_level)])


@dataclass
class LockoutRecord:
    """Lock state for one identity."""
    locked_until: Optional[int] = None
    challenge_satisfied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'locked_until': self.locked_until,
            'challenge_satisfied': self.challenge_satisfied,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LockoutRecord':
        return cls(
            locked_until=data.get('locked_until'),
            challenge_satisfied=bool(data.get('challenge_satisfied', False)),
        )


@dataclass
class LockoutLevel:
    """Escalation level for one identity."""
    level: int = 0
    set_at: int = 0


@dataclass
class FailureResult:
    """
    Outcome of recording a failed attempt.

    ``level`` is the stored escalation level after this attempt, which is the
    index into ``LockoutPolicy.durations`` that the next lock will apply. When
    this attempt triggered a lock, the duration it applied is
    ``lock_duration_ms`` and ``level`` has already moved on.
    """
    locked: bool
    remaining_attempts: int
    lock_duration_ms: int = 0
    level: int = 0
    requires_challenge: bool = False


@dataclass
class LockoutStatus:
    """Current lockout state of an identity. ``level`` has the same meaning as in FailureResult."""
    locked: bool
    remaining_seconds: int
    remaining_attempts: int
    requires_challenge: bool
    level: int = 0
    retry_after_ms: int = 0

    @property
    def wait_text(self) -> str:
        return format_wait(self.retry_after_ms)


class LockoutManager:
    """
    Progressive lockout state machine.

    Failed attempts are counted with the store's atomic sliding-window
    primitive at ``lockout-attempts:<identity>``, so concurrent handler
    instances never lose a failure and exactly one of them applies the lock.

    Store failures make the manager fail open: identities are reported as not
    locked and the failure is logged at ERROR.
    """

    def __init__(self, store: KeyValueStore, policy: Optional[LockoutPolicy] = None,
                 clock: Optional[Clock] = None, notifier: Optional[Notifier] = None,
                 metrics: Any = None):
        self.store = store
        self.policy = policy or LockoutPolicy()
        self.clock = clock or default_clock()
        self.notifier = notifier
        self.metrics = metrics

    @staticmethod
    def record_key(identity: str) -> str:
        return make_key("lockout", identity)

    @staticmethod
    def attempts_key(identity: str) -> str:
        return make_key("lockout-attempts", identity)

    @staticmethod
    def level_key(identity: str) -> str:
        return make_key("lockout-level", identity)

    @property
    def _window_ms(self) -> int:
        return to_millis(self.policy.attempt_window)

    async def _load_record(self, identity: str, now: int) -> LockoutRecord:
        data = await self.store.get(self.record_key(identity))
        record = LockoutRecord.from_dict(data) if data else LockoutRecord()
        if record.locked_until is not None and now >= record.locked_until:
            # Lock expired: back to unlocked with a clean slate
            record = LockoutRecord()
            await self.store.delete(self.record_key(identity))
        return record

    async def _save_record(self, identity: str, record: LockoutRecord, now: int) -> None:
        ttl = self._window_ms
        if record.locked_until is not None:
            ttl = max(ttl, record.locked_until - now)
        await self.store.set(self.record_key(identity), record.to_dict(), ttl_ms=ttl)

    async def _load_level(self, identity: str, now: int) -> int:
        data = await self.store.get(self.level_key(identity))
        if not data:
            return 0
        level = LockoutLevel(level=int(data.get('level', 0)), set_at=int(data.get('set_at', 0)))
        if now - level.set_at >= to_millis(self.policy.decay_horizon):
            return 0
        return level.level

    async def _save_level(self, identity: str, level: int, now: int) -> None:
        await self.store.set(
            self.level_key(identity),
            {'level': level, 'set_at': now},
            ttl_ms=to_millis(self.policy.decay_horizon),
        )

    def _requires_challenge(self, record: LockoutRecord, failures: int) -> bool:
        return failures >= self.policy.challenge_threshold and not record.challenge_satisfied

    async def record_failure(self, identity: str,
                             context: Optional[Dict[str, Any]] = None) -> FailureResult:
        """
        Record a failed authentication attempt.

        Args:
            identity: Login identity (email, username)
            context: Extra details forwarded with the lockout notification

        Returns:
            FailureResult
        """
        try:
            now = self.clock.now()
            record = await self._load_record(identity, now)

            if record.locked_until is not None:
                # Already locked: nothing is counted and nothing re-notified
                return FailureResult(
                    locked=True,
                    remaining_attempts=0,
                    lock_duration_ms=record.locked_until - now,
                    level=await self._load_level(identity, now),
                )

            snapshot = await self.store.sliding_window(
                self.attempts_key(identity), self._window_ms, self.policy.max_attempts
            )

            if not snapshot.admitted:
                # The threshold was reached by a concurrent failure, which applies the lock
                record = await self._load_record(identity, now)
                return FailureResult(
                    locked=True,
                    remaining_attempts=0,
                    lock_duration_ms=max(0, (record.locked_until or now) - now),
                    level=await self._load_level(identity, now),
                )

            failures = snapshot.count + 1
            if failures < self.policy.max_attempts:
                return FailureResult(
                    locked=False,
                    remaining_attempts=self.policy.max_attempts - failures,
                    level=await self._load_level(identity, now),
                    requires_challenge=self._requires_challenge(record, failures),
                )

            level = await self._load_level(identity, now)
            duration = self.policy.duration_ms(level)
            new_level = min(level + 1, self.policy.max_level)

            record.locked_until = now + duration
            record.challenge_satisfied = False
            await self._save_record(identity, record, now)
            await self._save_level(identity, new_level, now)
            await self.store.delete(self.attempts_key(identity))
        except StorageError as e:
            logger.error(f"Lockout store unavailable for {identity}, failing open: {e}")
            return FailureResult(locked=False, remaining_attempts=self.policy.max_attempts)

        logger.warning(
            f"Account {identity} locked for {format_wait(duration)} "
            f"after {failures} failed attempts (level {new_level})"
        )
        if self.metrics is not None:
            await self.metrics.record_lockout(level)
        await dispatch(self.notifier, Notification(
            kind=ACCOUNT_LOCKED,
            subject=identity,
            severity=Severity.WARNING,
            details={
                **(context or {}),
                'duration_ms': duration,
                'duration_seconds': ceil_seconds(duration),
                'level': new_level,
                'locked_until': record.locked_until,
                'failed_attempts': failures,
            },
            timestamp=now,
        ))
        return FailureResult(locked=True, remaining_attempts=0, lock_duration_ms=duration, level=new_level)

    async def record_success(self, identity: str) -> None:
        """Clear the failure count and the challenge flag. The level is left untouched."""
        try:
            now = self.clock.now()
            record = await self._load_record(identity, now)
            await self.store.delete(self.attempts_key(identity))
            if record.locked_until is None:
                await self.store.delete(self.record_key(identity))
                return
            record.challenge_satisfied = False
            await self._save_record(identity, record, now)
        except StorageError as e:
            logger.error(f"Lockout store unavailable for {identity}, success not recorded: {e}")

    async def status(self, identity: str) -> LockoutStatus:
        """Get the lockout status of an identity."""
        try:
            now = self.clock.now()
            record = await self._load_record(identity, now)
            level = await self._load_level(identity, now)
            if record.locked_until is None:
                snapshot = await self.store.sliding_window(
                    self.attempts_key(identity), self._window_ms, self.policy.max_attempts, record=False
                )
        except StorageError as e:
            logger.error(f"Lockout store unavailable for {identity}, failing open: {e}")
            return LockoutStatus(False, 0, self.policy.max_attempts, False)

        if record.locked_until is not None:
            retry_after = record.locked_until - now
            return LockoutStatus(
                locked=True,
                remaining_seconds=ceil_seconds(retry_after),
                remaining_attempts=0,
                requires_challenge=False,
                level=level,
                retry_after_ms=retry_after,
            )

        return LockoutStatus(
            locked=False,
            remaining_seconds=0,
            remaining_attempts=max(0, self.policy.max_attempts - snapshot.count),
            requires_challenge=self._requires_challenge(record, snapshot.count),
            level=level,
        )

    async def satisfy_challenge(self, identity: str) -> None:
        """Mark the secondary challenge as passed for the current unlocked period."""
        try:
            now = self.clock.now()
            record = await self._load_record(identity, now)
            if record.locked_until is not None:
                return
            record.challenge_satisfied = True
            await self._save_record(identity, record, now)
        except StorageError as e:
            logger.error(f"Lockout store unavailable for {identity}, challenge not recorded: {e}")

    async def reset(self, identity: str) -> None:
        """Administrative unlock: drop the failure count, the lock and the level."""
        await self.store.delete(self.record_key(identity))
        await self.store.delete(self.attempts_key(identity))
        await self.store.delete(self.level_key(identity))
        logger.info(f"Lockout state reset for {identity}")
