"""
Tests for the store-backed circuit breaker and the per-dependency registry.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from flowguard.circuit import (
    CircuitBreaker,
    CircuitBreakerOptions,
    CircuitBreakerRegistry,
    CircuitPhase,
    circuit_breaker,
    with_circuit_breaker,
)
from flowguard.common.clock import ManualClock
from flowguard.errors import CircuitOpenError, ConfigurationError, ErrorKind
from flowguard.monitoring import MetricsCollector
from flowguard.notify import CIRCUIT_OPEN, MemoryNotifier, Severity
from flowguard.store import MemoryStore, StorageError


class UnavailableStore(MemoryStore):
    """Store whose backend is always down."""

    async def get(self, key):
        raise StorageError("get", key, "connection refused")

    async def set(self, key, value, ttl_ms=None):
        raise StorageError("set", key, "connection refused")


@pytest.fixture
def clock():
    return ManualClock(start=0)


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def notifier():
    return MemoryNotifier()


def make_breaker(store, clock, notifier=None, **kwargs):
    options = CircuitBreakerOptions(
        name=kwargs.pop("name", "svc-x"),
        failure_threshold=kwargs.pop("failure_threshold", 3),
        reset_timeout=kwargs.pop("reset_timeout", timedelta(seconds=30)),
        **kwargs,
    )
    return CircuitBreaker(options, store, clock=clock, notifier=notifier)


class TestCircuitBreakerOptions:
    """Test option validation."""

    def test_defaults(self):
        options = CircuitBreakerOptions(name="db")
        assert options.failure_threshold == 5
        assert options.success_threshold == 2
        assert options.reset_timeout == timedelta(seconds=30)
        assert options.monitor_window == timedelta(seconds=60)

    def test_threshold_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            CircuitBreakerOptions(name="db", failure_threshold=0)
        with pytest.raises(ConfigurationError):
            CircuitBreakerOptions(name="db", success_threshold=0)

    def test_name_required(self, store):
        with pytest.raises(ConfigurationError):
            CircuitBreaker(CircuitBreakerOptions(), store)


class TestCircuitBreaker:
    """Test circuit breaker phases."""

    @pytest.mark.asyncio
    async def test_new_breaker_is_closed(self, store, clock):
        breaker = make_breaker(store, clock)
        decision = await breaker.can_execute()
        assert decision.allowed
        assert decision.phase == CircuitPhase.CLOSED

    @pytest.mark.asyncio
    async def test_open_probe_and_recover(self, store, clock, notifier):
        breaker = make_breaker(store, clock, notifier)
        for t in (0, 1, 2):
            clock.set(t)
            await breaker.record_failure(RuntimeError("upstream 503"))

        decision = await breaker.can_execute()
        assert not decision.allowed
        assert decision.phase == CircuitPhase.OPEN
        assert decision.retry_after_ms == 30_000

        clock.set(30_001)
        decision = await breaker.can_execute()
        assert not decision.allowed
        assert decision.retry_after_ms == 1

        clock.set(30_002)
        decision = await breaker.can_execute()
        assert decision.allowed
        assert decision.phase == CircuitPhase.HALF_OPEN

        await breaker.record_success()
        state = await breaker.get_state()
        assert state.phase == CircuitPhase.HALF_OPEN
        assert state.success_count == 1

        await breaker.record_success()
        state = await breaker.get_state()
        assert state.phase == CircuitPhase.CLOSED
        assert state.failure_count == 0
        assert state.success_count == 0

        opened = notifier.get_notifications(kind=CIRCUIT_OPEN)
        assert len(opened) == 1
        assert opened[0].subject == "svc-x"
        assert opened[0].severity == Severity.CRITICAL
        assert opened[0].details["failure_count"] == 3

        phases = [(t.from_phase, t.to_phase) for t in breaker.get_transitions()]
        assert phases == [
            (CircuitPhase.CLOSED, CircuitPhase.OPEN),
            (CircuitPhase.OPEN, CircuitPhase.HALF_OPEN),
            (CircuitPhase.HALF_OPEN, CircuitPhase.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self, store, clock, notifier):
        breaker = make_breaker(store, clock, notifier)
        for _ in range(3):
            await breaker.record_failure()

        clock.set(30_000)
        assert (await breaker.can_execute()).phase == CircuitPhase.HALF_OPEN
        await breaker.record_success()
        await breaker.record_failure(ConnectionError("reset"))

        state = await breaker.get_state()
        assert state.phase == CircuitPhase.OPEN
        assert state.failure_count == 4
        assert state.success_count == 0
        assert state.last_failure_at == 30_000
        assert len(notifier.get_notifications(kind=CIRCUIT_OPEN)) == 2

    @pytest.mark.asyncio
    async def test_late_failure_while_open_does_not_notify(self, store, clock, notifier):
        breaker = make_breaker(store, clock, notifier)
        for _ in range(3):
            await breaker.record_failure()

        clock.set(5_000)
        await breaker.record_failure()

        state = await breaker.get_state()
        assert state.phase == CircuitPhase.OPEN
        assert state.failure_count == 4
        assert state.last_failure_at == 5_000
        assert len(notifier) == 1

    @pytest.mark.asyncio
    async def test_success_while_closed_offsets_one_failure(self, store, clock):
        breaker = make_breaker(store, clock)
        await breaker.record_failure()
        await breaker.record_failure()
        await breaker.record_success()
        assert (await breaker.get_state()).failure_count == 1

        await breaker.record_success()
        await breaker.record_success()
        assert (await breaker.get_state()).failure_count == 0

    @pytest.mark.asyncio
    async def test_interleaved_success_does_not_clear_the_count(self, store, clock):
        breaker = make_breaker(store, clock)
        await breaker.record_failure()
        await breaker.record_failure()
        clock.advance(10_000)
        await breaker.record_success()
        await breaker.record_failure()

        state = await breaker.get_state()
        assert state.phase == CircuitPhase.CLOSED
        assert state.failure_count == 2

        await breaker.record_failure()
        assert (await breaker.get_state()).phase == CircuitPhase.OPEN

    @pytest.mark.asyncio
    async def test_success_while_open_is_ignored(self, store, clock):
        breaker = make_breaker(store, clock)
        for _ in range(3):
            await breaker.record_failure()
        await breaker.record_success()

        state = await breaker.get_state()
        assert state.phase == CircuitPhase.OPEN
        assert state.failure_count == 3

    @pytest.mark.asyncio
    async def test_stale_failures_decay(self, store, clock):
        breaker = make_breaker(store, clock)
        await breaker.record_failure()
        await breaker.record_failure()

        clock.set(60_001)
        decision = await breaker.can_execute()
        assert decision.allowed
        assert decision.failure_count == 0

    @pytest.mark.asyncio
    async def test_stale_failures_do_not_count_toward_threshold(self, store, clock):
        breaker = make_breaker(store, clock)
        await breaker.record_failure()
        await breaker.record_failure()

        clock.set(70_000)
        await breaker.record_failure()

        state = await breaker.get_state()
        assert state.phase == CircuitPhase.CLOSED
        assert state.failure_count == 1

    @pytest.mark.asyncio
    async def test_execute_rejects_when_open(self, store, clock):
        breaker = make_breaker(store, clock)
        for _ in range(3):
            await breaker.record_failure()

        operation = MagicMock()
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(operation)

        error = exc_info.value
        assert error.kind == ErrorKind.DEPENDENCY_UNAVAILABLE
        assert error.dependency == "svc-x"
        assert error.retry_after_ms == 30_000
        assert error.retry_after_seconds == 30
        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_execute_records_and_reraises(self, store, clock):
        breaker = make_breaker(store, clock)
        error = ConnectionError("socket hang up")

        async def failing():
            raise error

        with pytest.raises(ConnectionError) as exc_info:
            await breaker.execute(failing)
        assert exc_info.value is error
        assert (await breaker.get_state()).failure_count == 1

        async def working(value):
            return value * 2

        assert await breaker.execute(working, 21) == 42
        assert (await breaker.get_state()).failure_count == 0

    @pytest.mark.asyncio
    async def test_store_failure_fails_open(self, clock, caplog):
        breaker = make_breaker(UnavailableStore(clock=clock), clock)

        decision = await breaker.can_execute()
        assert decision.allowed
        assert decision.phase == CircuitPhase.CLOSED

        await breaker.record_failure(RuntimeError("boom"))
        await breaker.record_success()
        assert "failing open" in caplog.text

    @pytest.mark.asyncio
    async def test_state_change_callback(self, store, clock):
        seen = []
        breaker = make_breaker(store, clock, on_state_change=seen.append)
        for _ in range(3):
            await breaker.record_failure()
        assert [t.to_phase for t in seen] == [CircuitPhase.OPEN]

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self, store, clock):
        def explode(transition):
            raise RuntimeError("callback bug")

        breaker = make_breaker(store, clock, on_state_change=explode)
        for _ in range(3):
            await breaker.record_failure()
        assert (await breaker.get_state()).phase == CircuitPhase.OPEN

    @pytest.mark.asyncio
    async def test_metrics_record_transitions(self, store, clock):
        metrics = MetricsCollector()
        breaker = CircuitBreaker(
            CircuitBreakerOptions(name="svc-x", failure_threshold=1),
            store, clock=clock, metrics=metrics,
        )
        await breaker.record_failure()
        assert metrics.get_snapshot()["circuit_transitions:svc-x:open"] == 1

    @pytest.mark.asyncio
    async def test_reset(self, store, clock):
        breaker = make_breaker(store, clock)
        for _ in range(3):
            await breaker.record_failure()

        await breaker.reset()
        state = await breaker.get_state()
        assert state.phase == CircuitPhase.CLOSED
        assert state.failure_count == 0
        assert breaker.get_transitions()[-1].reason == "Manual reset"

    @pytest.mark.asyncio
    async def test_state_is_shared_through_store(self, store, clock):
        first = make_breaker(store, clock)
        second = make_breaker(store, clock)
        for _ in range(3):
            await first.record_failure()
        assert not (await second.can_execute()).allowed

    @pytest.mark.asyncio
    async def test_decorator(self, store, clock):
        breaker = make_breaker(store, clock, failure_threshold=1)

        @circuit_breaker(breaker)
        async def fetch():
            raise TimeoutError("upstream")

        with pytest.raises(TimeoutError):
            await fetch()
        with pytest.raises(CircuitOpenError):
            await fetch()


class TestCircuitBreakerRegistry:
    """Test per-dependency policies."""

    def test_known_dependency_policies(self, store, clock):
        registry = CircuitBreakerRegistry(store, clock=clock)
        openai = registry.get("openai")
        assert openai.options.failure_threshold == 3
        assert openai.options.reset_timeout == timedelta(seconds=60)

        database = registry.get("database")
        assert database.options.failure_threshold == 10
        assert database.options.success_threshold == 3

    def test_unknown_dependency_uses_default(self, store, clock):
        default = CircuitBreakerOptions(failure_threshold=7)
        registry = CircuitBreakerRegistry(store, clock=clock, default_options=default)
        breaker = registry.get("billing")
        assert breaker.name == "billing"
        assert breaker.options.failure_threshold == 7

    def test_same_instance_per_name(self, store, clock):
        registry = CircuitBreakerRegistry(store, clock=clock)
        assert registry.get("openai") is registry.get("openai")
        assert registry.names() == ["openai"]

    @pytest.mark.asyncio
    async def test_get_all_states_and_reset_all(self, store, clock):
        registry = CircuitBreakerRegistry(store, clock=clock)
        for _ in range(3):
            await registry.get("openai").record_failure()
        await registry.get("database").record_failure()

        states = await registry.get_all_states()
        assert states["openai"].phase == CircuitPhase.OPEN
        assert states["database"].failure_count == 1

        await registry.reset_all()
        states = await registry.get_all_states()
        assert all(s.phase == CircuitPhase.CLOSED and s.failure_count == 0 for s in states.values())

    @pytest.mark.asyncio
    async def test_with_circuit_breaker(self, store, clock):
        async def fail():
            raise ConnectionError("refused")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await with_circuit_breaker("svc-y", fail, store, clock=clock, failure_threshold=2)

        with pytest.raises(CircuitOpenError):
            await with_circuit_breaker("svc-y", fail, store, clock=clock, failure_threshold=2)
