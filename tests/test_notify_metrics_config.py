"""
Tests for notifiers, metrics, configuration and error types.
"""

import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from flowguard.common.utils import format_duration, format_wait, make_key, millis_to_iso
from flowguard.core import Config
from flowguard.errors import (
    AccountLockedError,
    ConfigurationError,
    ErrorKind,
    OperationTimeoutError,
    RateLimitExceeded,
)
from flowguard.monitoring import MetricConfig, MetricsCollector
from flowguard.notify import (
    ACCOUNT_LOCKED,
    CIRCUIT_OPEN,
    CallbackNotifier,
    LoggingNotifier,
    MemoryNotifier,
    Notification,
    Notifier,
    Severity,
    dispatch,
)
from flowguard.rate import RateLimitRule
from flowguard.util import (
    get_bool_config,
    get_config_value,
    get_duration_config,
    load_config_from_env,
    parse_duration_string,
)


class BrokenNotifier(Notifier):
    async def notify(self, notification):
        raise ConnectionError("webhook unreachable")


class TestNotifiers:
    """Test notification sinks."""

    @pytest.mark.asyncio
    async def test_memory_notifier_filters(self):
        notifier = MemoryNotifier()
        await notifier.notify(Notification(CIRCUIT_OPEN, "openai", Severity.CRITICAL, timestamp=0))
        await notifier.notify(Notification(ACCOUNT_LOCKED, "a@example.com", timestamp=0))
        await notifier.notify(Notification(CIRCUIT_OPEN, "database", Severity.CRITICAL, timestamp=0))

        assert len(notifier) == 3
        assert [n.subject for n in notifier.get_notifications(kind=CIRCUIT_OPEN)] == ["openai", "database"]
        assert len(notifier.get_notifications(subject="a@example.com")) == 1

        notifier.clear()
        assert len(notifier) == 0

    @pytest.mark.asyncio
    async def test_memory_notifier_is_bounded(self):
        notifier = MemoryNotifier(max_entries=2)
        for subject in ("a", "b", "c"):
            await notifier.notify(Notification(CIRCUIT_OPEN, subject, timestamp=0))
        assert [n.subject for n in notifier.get_notifications()] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_callback_notifier_sync_and_async(self):
        sync_callback = MagicMock()
        async_callback = AsyncMock()
        notification = Notification(CIRCUIT_OPEN, "openai", timestamp=0)

        await CallbackNotifier(sync_callback).notify(notification)
        await CallbackNotifier(async_callback).notify(notification)

        sync_callback.assert_called_once_with(notification)
        async_callback.assert_awaited_once_with(notification)

    @pytest.mark.asyncio
    async def test_logging_notifier(self, caplog):
        with caplog.at_level(logging.WARNING):
            await LoggingNotifier().notify(
                Notification(CIRCUIT_OPEN, "openai", Severity.CRITICAL, {"failure_count": 3}, timestamp=0)
            )
        assert "[circuit_open] openai" in caplog.text
        assert caplog.records[-1].levelno == logging.CRITICAL

    @pytest.mark.asyncio
    async def test_dispatch_swallows_failures(self, caplog):
        notification = Notification(ACCOUNT_LOCKED, "a@example.com", timestamp=0)
        assert await dispatch(BrokenNotifier(), notification) is False
        assert "webhook unreachable" in caplog.text

        assert await dispatch(None, notification) is False
        assert await dispatch(MemoryNotifier(), notification) is True

    def test_to_dict(self):
        data = Notification(CIRCUIT_OPEN, "openai", Severity.CRITICAL, {"k": 1}, timestamp=0).to_dict()
        assert data == {
            "kind": "circuit_open",
            "subject": "openai",
            "severity": "critical",
            "details": {"k": 1},
            "timestamp": "1970-01-01T00:00:00+00:00",
        }


class TestMetricsCollector:
    """Test Prometheus-backed counters."""

    @pytest.mark.asyncio
    async def test_snapshot(self):
        metrics = MetricsCollector()
        await metrics.record_rate_limit_decision("publish_post", True)
        await metrics.record_rate_limit_decision("publish_post", False)
        await metrics.record_rate_limit_decision("publish_post", False)
        await metrics.record_retry_attempt("exhausted")
        await metrics.record_lockout(2)

        snapshot = metrics.get_snapshot()
        assert snapshot["rate_limit_decisions:publish_post:allowed"] == 1
        assert snapshot["rate_limit_decisions:publish_post:denied"] == 2
        assert snapshot["retry_attempts:exhausted"] == 1
        assert snapshot["lockouts:2"] == 1

        metrics.reset()
        assert metrics.get_snapshot() == {}

    @pytest.mark.asyncio
    async def test_export(self):
        metrics = MetricsCollector()
        await metrics.record_circuit_transition("openai", "open")
        output = metrics.export().decode("utf-8")
        assert 'flowguard_circuit_transitions_total{dependency="openai",to_phase="open"} 1.0' in output

    @pytest.mark.asyncio
    async def test_collectors_do_not_share_registries(self):
        first = MetricsCollector()
        second = MetricsCollector()
        await first.record_retry_attempt("success")
        assert second.get_snapshot() == {}

    @pytest.mark.asyncio
    async def test_disabled(self):
        metrics = MetricsCollector(MetricConfig(enabled=False))
        await metrics.record_rate_limit_decision("publish_post", True)
        await metrics.record_lockout(0)
        assert metrics.get_snapshot() == {}


class TestConfigUtils:
    """Test environment helpers."""

    @pytest.mark.parametrize("text,expected", [
        ("500ms", timedelta(milliseconds=500)),
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("2h", timedelta(hours=2)),
        ("1d", timedelta(days=1)),
        ("250", timedelta(milliseconds=250)),
        (" 1.5 S ", timedelta(seconds=1.5)),
    ])
    def test_parse_duration_string(self, text, expected):
        assert parse_duration_string(text) == expected

    @pytest.mark.parametrize("text", ["", "fast", "5 weeks", "-3s"])
    def test_parse_duration_string_rejects(self, text):
        with pytest.raises(ValueError):
            parse_duration_string(text)

    def test_get_config_value(self, monkeypatch):
        monkeypatch.setenv("FLOWGUARD_LIMIT", "12")
        monkeypatch.setenv("FLOWGUARD_BROKEN", "twelve")
        assert get_config_value("limit", cast_type=int) == 12
        assert get_config_value("broken", 5, int) == 5
        assert get_config_value("missing", "fallback") == "fallback"

    def test_typed_helpers(self, monkeypatch):
        monkeypatch.setenv("FLOWGUARD_ENABLED", "yes")
        monkeypatch.setenv("FLOWGUARD_WINDOW", "90s")
        assert get_bool_config("enabled") is True
        assert get_duration_config("window", "5m") == timedelta(seconds=90)
        assert get_duration_config("other", "5m") == timedelta(minutes=5)

    def test_load_config_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWGUARD_REDIS_URL", "redis://cache:6379/1")
        assert load_config_from_env()["redis_url"] == "redis://cache:6379/1"


class TestConfig:
    """Test the FlowGuard configuration object."""

    def test_defaults_use_memory_store(self):
        config = Config()
        assert config.validate()
        assert config.storage.store_type == "memory"
        assert config.rate_limits["magic_link"].limit == 3
        assert config.circuit_policies["openai"].failure_threshold == 3

    def test_redis_url_selects_redis(self):
        storage = Config(redis_url="redis://localhost:6379/0", key_prefix="app:").storage
        assert storage.store_type == "redis"
        assert storage.connection_url == "redis://localhost:6379/0"
        assert storage.key_prefix == "app:"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWGUARD_REDIS_URL", "redis://cache:6379/0")
        monkeypatch.setenv("FLOWGUARD_USE_SERVER_TIME", "false")
        monkeypatch.setenv("FLOWGUARD_CIRCUIT_FAILURE_THRESHOLD", "7")
        monkeypatch.setenv("FLOWGUARD_CIRCUIT_RESET_TIMEOUT", "45s")
        monkeypatch.setenv("FLOWGUARD_LOCKOUT_MAX_ATTEMPTS", "10")
        monkeypatch.setenv("FLOWGUARD_LOCKOUT_WINDOW", "15m")
        monkeypatch.setenv("FLOWGUARD_METRICS_ENABLED", "0")

        config = Config.from_env()
        assert config.redis_url == "redis://cache:6379/0"
        assert config.use_server_time is False
        assert config.default_circuit.failure_threshold == 7
        assert config.default_circuit.reset_timeout == timedelta(seconds=45)
        assert config.lockout.max_attempts == 10
        assert config.lockout.attempt_window == timedelta(minutes=15)
        assert config.metrics.enabled is False
        assert config.validate()

    @pytest.mark.parametrize("kwargs", [
        {"redis_url": "http://localhost:6379"},
        {"rate_limits": {"broken": RateLimitRule("broken", 5, 0)}},
    ])
    def test_validate_rejects(self, kwargs):
        with pytest.raises(ConfigurationError):
            Config(**kwargs).validate()

    def test_validate_rejects_challenge_above_max_attempts(self):
        config = Config()
        config.lockout.challenge_threshold = 9
        with pytest.raises(ConfigurationError):
            config.validate()


class TestErrors:
    """Test error types and formatting helpers."""

    def test_rate_limit_error(self):
        error = RateLimitExceeded("u1", "gdpr_export", retry_after_ms=90_500, limit=5)
        assert error.kind == ErrorKind.ADMISSION_DENIED
        assert error.retry_after_seconds == 91
        assert str(error).startswith("admission_denied: Rate limit exceeded for 'gdpr_export'")
        data = error.to_dict()
        assert data["error"] == "admission_denied"
        assert data["wait"] == "1 minute 31 seconds"
        assert data["details"]["limit"] == 5

    def test_account_locked_error(self):
        error = AccountLockedError("a@example.com", 15 * 60_000, level=2)
        assert "15 minutes" in error.message
        assert error.details == {"identity": "a@example.com", "level": 2}

    def test_timeout_error_is_transient(self):
        error = OperationTimeoutError(250)
        assert error.kind == ErrorKind.TRANSIENT
        assert "cause" not in error.to_dict()

    def test_configuration_error(self):
        error = ConfigurationError("bad", "redis_url", "http://x")
        assert error.details == {"config_key": "redis_url", "config_value": "http://x"}

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0 seconds"),
        (1, "1 second"),
        (59.2, "1 minute"),
        (90, "1 minute 30 seconds"),
        (3600, "1 hour"),
        (5400, "1 hour 30 minutes"),
    ])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_format_wait_and_keys(self):
        assert format_wait(None) == "now"
        assert format_wait(0) == "now"
        assert make_key("ratelimit", "publish_post", "u1") == "ratelimit:publish_post:u1"
        assert millis_to_iso(0) == "1970-01-01T00:00:00+00:00"
