"""
Circuit breaker implementation for preventing cascading failures.

Breaker state lives in the shared store under ``circuit:<name>`` so that every
stateless handler instance sees the same phase. Phase changes are evaluated
lazily when the breaker is consulted; there is no background timer.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from ..common.clock import Clock, default_clock, to_millis
from ..common.utils import call_maybe_async, make_key
from ..errors import CircuitOpenError, ConfigurationError
from ..notify import CIRCUIT_OPEN, Notification, Notifier, Severity, dispatch
from ..store import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


class CircuitPhase(str, Enum):
    """Circuit breaker phases."""
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failure mode, requests rejected
    HALF_OPEN = "half_open"  # Probing, requests allowed and evaluated one by one


@dataclass
class CircuitState:
    """Persisted state of one dependency's breaker."""
    phase: CircuitPhase = CircuitPhase.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: Optional[int] = None
    last_phase_change_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'phase': self.phase.value,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'last_failure_at': self.last_failure_at,
            'last_phase_change_at': self.last_phase_change_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CircuitState':
        """Create from dictionary."""
        return cls(
            phase=CircuitPhase(data.get('phase', CircuitPhase.CLOSED.value)),
            failure_count=int(data.get('failure_count', 0)),
            success_count=int(data.get('success_count', 0)),
            last_failure_at=data.get('last_failure_at'),
            last_phase_change_at=data.get('last_phase_change_at'),
        )


@dataclass
class StateTransition:
    """Circuit breaker phase transition."""
    name: str
    from_phase: CircuitPhase
    to_phase: CircuitPhase
    timestamp: int
    reason: str
    failure_count: int = 0
    success_count: int = 0


@dataclass
class ExecutionDecision:
    """Result of an admission check."""
    allowed: bool
    phase: CircuitPhase
    retry_after_ms: Optional[int] = None
    failure_count: int = 0


@dataclass
class CircuitBreakerOptions:
    """Circuit breaker configuration options."""
    name: str = ""
    failure_threshold: int = 5
    reset_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    success_threshold: int = 2  # Successes needed to close from half-open
    monitor_window: timedelta = field(default_factory=lambda: timedelta(seconds=60))
    state_ttl: timedelta = field(default_factory=lambda: timedelta(hours=1))
    on_state_change: Optional[Callable[[StateTransition], Any]] = None

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1",
                                     "failure_threshold", self.failure_threshold)
        if self.success_threshold < 1:
            raise ConfigurationError("success_threshold must be at least 1",
                                     "success_threshold", self.success_threshold)


MAX_TRANSITIONS = 100


class CircuitBreaker:
    """
    Store-backed circuit breaker for one dependency.

    Phases:
    - CLOSED: calls pass. Failures within the monitoring window accumulate and
      open the circuit at failure_threshold.
    - OPEN: calls are rejected with a retry-after until reset_timeout has
      passed since the last failure. The next check after that moves to
      HALF_OPEN and lets the caller through as a probe.
    - HALF_OPEN: any failure reopens; success_threshold successes close.

    If the store fails, the breaker fails open: calls are allowed and outcomes
    are dropped.
    """

    def __init__(self, options: CircuitBreakerOptions, store: KeyValueStore,
                 clock: Optional[Clock] = None, notifier: Optional[Notifier] = None,
                 metrics: Any = None):
        if not options.name:
            raise ConfigurationError("Circuit breaker requires a name", "name")
        self.options = options
        self.store = store
        self.clock = clock or default_clock()
        self.notifier = notifier
        self.metrics = metrics
        # Serializes read-modify-write cycles issued from this process
        self._lock = asyncio.Lock()
        self._transitions: List[StateTransition] = []

    @property
    def name(self) -> str:
        """Get circuit breaker name."""
        return self.options.name

    @property
    def key(self) -> str:
        return make_key("circuit", self.name)

    @property
    def _reset_ms(self) -> int:
        return to_millis(self.options.reset_timeout)

    def _is_stale(self, state: CircuitState, now: int) -> bool:
        return (
            state.failure_count > 0
            and state.last_failure_at is not None
            and now - state.last_failure_at > to_millis(self.options.monitor_window)
        )

    async def _load(self) -> CircuitState:
        data = await self.store.get(self.key)
        if not data:
            return CircuitState()
        return CircuitState.from_dict(data)

    async def _save(self, state: CircuitState) -> None:
        await self.store.set(self.key, state.to_dict(), ttl_ms=to_millis(self.options.state_ttl))

    async def can_execute(self) -> ExecutionDecision:
        """
        Check whether a call may proceed.

        Only the phase transition (OPEN to HALF_OPEN) and stale-failure decay
        are written here; outcome counters are left to record_success and
        record_failure.
        """
        transition = None
        async with self._lock:
            try:
                state = await self._load()
                now = self.clock.now()

                if state.phase == CircuitPhase.OPEN:
                    elapsed = now - (state.last_failure_at or 0)
                    if elapsed < self._reset_ms:
                        retry_after = min(self._reset_ms, self._reset_ms - elapsed)
                        logger.debug(f"Circuit breaker '{self.name}' rejected call, retry in {retry_after}ms")
                        return ExecutionDecision(False, CircuitPhase.OPEN, retry_after, state.failure_count)

                    new_state = dataclasses.replace(
                        state, phase=CircuitPhase.HALF_OPEN, success_count=0, last_phase_change_at=now
                    )
                    await self._save(new_state)
                    transition = self._transition(state, new_state, now, "Reset timeout elapsed, probing")
                    state = new_state

                elif state.phase == CircuitPhase.CLOSED and self._is_stale(state, now):
                    state = dataclasses.replace(state, failure_count=0)
                    await self._save(state)

            except StorageError as e:
                logger.error(f"Circuit breaker '{self.name}' store unavailable, failing open: {e}")
                return ExecutionDecision(True, CircuitPhase.CLOSED)

        if transition:
            await self._on_transition(transition)
        return ExecutionDecision(True, state.phase, None, state.failure_count)

    async def record_success(self) -> None:
        """Record a successful call outcome."""
        transition = None
        async with self._lock:
            try:
                state = await self._load()
                now = self.clock.now()

                if state.phase == CircuitPhase.HALF_OPEN:
                    successes = state.success_count + 1
                    if successes >= self.options.success_threshold:
                        new_state = CircuitState(phase=CircuitPhase.CLOSED, last_phase_change_at=now)
                        transition = self._transition(
                            state, new_state, now, f"Recovery successful ({successes} successes)"
                        )
                    else:
                        new_state = dataclasses.replace(state, success_count=successes)
                elif state.phase == CircuitPhase.CLOSED and state.failure_count > 0:
                    # One success offsets one failure; stale failures drop entirely
                    failures = 0 if self._is_stale(state, now) else state.failure_count - 1
                    new_state = dataclasses.replace(state, failure_count=failures)
                else:
                    return

                await self._save(new_state)
            except StorageError as e:
                logger.error(f"Circuit breaker '{self.name}' store unavailable, dropping success: {e}")
                return

        logger.debug(f"Circuit breaker '{self.name}' recorded success")
        if transition:
            await self._on_transition(transition)

    async def record_failure(self, error: Optional[BaseException] = None) -> None:
        """Record a failed call outcome."""
        transition = None
        async with self._lock:
            try:
                state = await self._load()
                now = self.clock.now()

                if state.phase == CircuitPhase.HALF_OPEN:
                    new_state = dataclasses.replace(
                        state,
                        phase=CircuitPhase.OPEN,
                        failure_count=state.failure_count + 1,
                        success_count=0,
                        last_failure_at=now,
                        last_phase_change_at=now,
                    )
                    transition = self._transition(state, new_state, now, "Probe failed", error)
                elif state.phase == CircuitPhase.OPEN:
                    # Late outcome of a call admitted before the circuit opened
                    new_state = dataclasses.replace(
                        state, failure_count=state.failure_count + 1, last_failure_at=now
                    )
                else:
                    failures = (0 if self._is_stale(state, now) else state.failure_count) + 1
                    if failures >= self.options.failure_threshold:
                        new_state = dataclasses.replace(
                            state,
                            phase=CircuitPhase.OPEN,
                            failure_count=failures,
                            success_count=0,
                            last_failure_at=now,
                            last_phase_change_at=now,
                        )
                        transition = self._transition(
                            state, new_state, now, f"Failure threshold reached ({failures} failures)", error
                        )
                    else:
                        new_state = dataclasses.replace(state, failure_count=failures, last_failure_at=now)

                await self._save(new_state)
            except StorageError as e:
                logger.error(f"Circuit breaker '{self.name}' store unavailable, dropping failure: {e}")
                return

        logger.debug(f"Circuit breaker '{self.name}' recorded failure: {error}")
        if transition:
            await self._on_transition(transition, error)

    async def execute(self, operation: Callable, *args, **kwargs) -> Any:
        """
        Execute an operation under circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: The operation's own error, unchanged, after it is recorded
        """
        decision = await self.can_execute()
        if not decision.allowed:
            raise CircuitOpenError(
                self.name,
                phase=decision.phase.value,
                retry_after_ms=decision.retry_after_ms,
                failure_count=decision.failure_count,
            )

        try:
            result = await call_maybe_async(operation, *args, **kwargs)
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result

    async def get_state(self) -> CircuitState:
        """Get the persisted state (fresh CLOSED when none exists)."""
        return await self._load()

    async def reset(self) -> None:
        """Administratively close the circuit and clear its counters."""
        transition = None
        async with self._lock:
            state = await self._load()
            now = self.clock.now()
            new_state = CircuitState(phase=CircuitPhase.CLOSED, last_phase_change_at=now)
            await self._save(new_state)
            if state.phase != CircuitPhase.CLOSED:
                transition = self._transition(state, new_state, now, "Manual reset")

        logger.info(f"Circuit breaker '{self.name}' manually reset")
        if transition:
            await self._on_transition(transition)

    def get_transitions(self) -> List[StateTransition]:
        """Get the transitions observed by this process."""
        return list(self._transitions)

    def _transition(self, old: CircuitState, new: CircuitState, now: int, reason: str,
                    error: Optional[BaseException] = None) -> StateTransition:
        transition = StateTransition(
            name=self.name,
            from_phase=old.phase,
            to_phase=new.phase,
            timestamp=now,
            reason=f"{reason}: {error}" if error else reason,
            failure_count=new.failure_count,
            success_count=new.success_count,
        )
        self._transitions.append(transition)
        if len(self._transitions) > MAX_TRANSITIONS:
            self._transitions = self._transitions[-MAX_TRANSITIONS // 2:]
        return transition

    async def _on_transition(self, transition: StateTransition,
                             error: Optional[BaseException] = None) -> None:
        if transition.to_phase == CircuitPhase.OPEN:
            logger.warning(f"Circuit breaker '{self.name}' opened: {transition.reason}")
        else:
            logger.info(
                f"Circuit breaker '{self.name}' {transition.from_phase.value} -> "
                f"{transition.to_phase.value}: {transition.reason}"
            )

        if self.options.on_state_change:
            try:
                await call_maybe_async(self.options.on_state_change, transition)
            except Exception as e:
                logger.error(f"State change callback failed: {e}")

        if self.metrics is not None:
            await self.metrics.record_circuit_transition(self.name, transition.to_phase.value)

        if transition.to_phase == CircuitPhase.OPEN:
            await dispatch(self.notifier, Notification(
                kind=CIRCUIT_OPEN,
                subject=self.name,
                severity=Severity.CRITICAL,
                details={
                    'failure_count': transition.failure_count,
                    'reason': transition.reason,
                    'retry_after_ms': self._reset_ms,
                    'error': str(error) if error else None,
                },
                timestamp=transition.timestamp,
            ))


def circuit_breaker(breaker: CircuitBreaker):
    """Decorator for circuit breaker protection."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await breaker.execute(func, *args, **kwargs)
        return wrapper
    return decorator
