"""
End-to-end tests for the FlowGuard facade and the demo.
"""

import asyncio
from datetime import timedelta

import pytest

from flowguard import FlowGuard, Config, ManualClock, MemoryStore
from flowguard.circuit import CircuitPhase
from flowguard.demo.main import run_demo
from flowguard.errors import (
    AccountLockedError,
    CircuitOpenError,
    ConfigurationError,
    OperationTimeoutError,
    RateLimitExceeded,
)
from flowguard.notify import CIRCUIT_OPEN, MemoryNotifier
from flowguard.rate import RateLimitRule
from flowguard.resilience import RetryPolicy


NO_RETRY = RetryPolicy(max_retries=0)


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000_000)


@pytest.fixture
def notifier():
    return MemoryNotifier()


@pytest.fixture
def guard(clock, notifier):
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)
        clock.advance(int(seconds * 1000))

    instance = FlowGuard.new(Config(), store=MemoryStore(clock=clock), clock=clock,
                             notifier=notifier, sleep=sleep)
    instance.sleeps = sleeps
    return instance


class TestFlowGuard:
    """Test the handler control flow."""

    def test_new_defaults_to_memory_store(self):
        instance = FlowGuard.new()
        assert isinstance(instance.store, MemoryStore)

    def test_new_validates_config(self):
        with pytest.raises(ConfigurationError):
            FlowGuard.new(Config(redis_url="mysql://db"))

    @pytest.mark.asyncio
    async def test_run_passes_arguments_and_result(self, guard):
        async def generate(prompt, tone="neutral"):
            return f"{tone}: {prompt}"

        result = await guard.run("u1", "content_generation", "openai", generate, "launch post", tone="upbeat")
        assert result == "upbeat: launch post"

        status = await guard.rate_limiter.status("u1", "content_generation", 20, 3_600_000)
        assert status.remaining == 19

    @pytest.mark.asyncio
    async def test_rate_limit_is_checked_first(self, guard):
        calls = []

        async def export():
            calls.append(1)
            return "archive.zip"

        for _ in range(5):
            await guard.run("u1", "gdpr_export", None, export)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await guard.run("u1", "gdpr_export", None, export)
        assert exc_info.value.retry_after_ms == 3_600_000
        assert len(calls) == 5

    @pytest.mark.asyncio
    async def test_limit_overrides(self, guard):
        async def ping():
            return "pong"

        await guard.run("u1", "health_check", None, ping, limit=1, window_ms=1000)
        with pytest.raises(RateLimitExceeded):
            await guard.run("u1", "health_check", None, ping, limit=1, window_ms=1000)

    @pytest.mark.asyncio
    async def test_unknown_action(self, guard):
        with pytest.raises(ConfigurationError):
            await guard.run("u1", "teleport", None, lambda: None)

    @pytest.mark.asyncio
    async def test_breaker_opens_after_final_failures(self, guard, notifier):
        calls = []

        async def generate():
            calls.append(1)
            raise ConnectionError("network unreachable")

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await guard.run("u1", "content_generation", "openai", generate, retry_policy=NO_RETRY)

        with pytest.raises(CircuitOpenError) as exc_info:
            await guard.run("u1", "content_generation", "openai", generate, retry_policy=NO_RETRY)

        assert exc_info.value.retry_after_ms == 60_000
        assert len(calls) == 3
        assert len(notifier.get_notifications(kind=CIRCUIT_OPEN, subject="openai")) == 1

    @pytest.mark.asyncio
    async def test_retries_happen_inside_one_breaker_outcome(self, guard):
        calls = []

        async def publish():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("socket hang up")
            return "posted"

        policy = RetryPolicy(max_retries=3, base_delay=timedelta(milliseconds=100), jitter=False)
        assert await guard.run("u1", "publish_post", "social-media", publish, retry_policy=policy) == "posted"
        assert guard.sleeps == [0.1, 0.2]

        state = await guard.breakers.get("social-media").get_state()
        assert state.phase == CircuitPhase.CLOSED
        assert state.failure_count == 0

    @pytest.mark.asyncio
    async def test_timeout(self, guard):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError):
            await guard.run("u1", "publish_post", "social-media", slow, retry_policy=NO_RETRY, timeout=10)

    @pytest.mark.asyncio
    async def test_check_rate_limit(self, guard):
        result = await guard.check_rate_limit("u1", "magic_link")
        assert result.allowed
        assert result.remaining == 2

        with pytest.raises(ConfigurationError):
            await guard.check_rate_limit("u1", "teleport")

    @pytest.mark.asyncio
    async def test_custom_rules(self, clock):
        config = Config(rate_limits={"upload": RateLimitRule("upload", 1, 60_000)})
        instance = FlowGuard.new(config, store=MemoryStore(clock=clock), clock=clock)
        assert (await instance.check_rate_limit("u1", "upload")).allowed
        assert not (await instance.check_rate_limit("u1", "upload")).allowed

    @pytest.mark.asyncio
    async def test_authenticate_and_lockout(self, guard):
        async def wrong_password():
            return False

        for _ in range(5):
            outcome = await guard.authenticate("a@example.com", wrong_password, challenge_passed=True)
        assert outcome.locked

        with pytest.raises(AccountLockedError):
            await guard.authenticate("a@example.com", wrong_password)

    @pytest.mark.asyncio
    async def test_magic_link(self, guard):
        for _ in range(3):
            await guard.request_magic_link("a@example.com")
        with pytest.raises(RateLimitExceeded):
            await guard.request_magic_link("a@example.com")

    @pytest.mark.asyncio
    async def test_context_manager_closes_store(self, clock):
        store = MemoryStore(clock=clock)
        async with FlowGuard.new(store=store, clock=clock):
            pass
        assert not await store.ping()


class TestDemo:
    """Test the demo script."""

    @pytest.mark.asyncio
    async def test_run_demo(self, capsys):
        assert await run_demo() == 0
        output = capsys.readouterr().out
        assert "phase=open, retry in 30000ms" in output
        assert "phase=half_open, allowed=True" in output
        assert "Request 4 denied" in output
        assert "published post-42 after 3 attempts" in output
        assert "A zero limit always rejects" in output
        assert "Demo completed successfully!" in output
