"""
Prometheus metrics integration for FlowGuard.

Counters for rate-limit decisions, fallbacks, circuit transitions, retry
attempts and lockouts. Metrics are best effort and in-process only: they reset
on restart and are never used to make an admission decision.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest


logger = logging.getLogger(__name__)


@dataclass
class MetricConfig:
    """Configuration for metrics collection."""

    enabled: bool = True
    namespace: str = "flowguard"


class MetricsCollector:
    """Metrics collector for FlowGuard decisions."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, config: MetricConfig = None):
        """
        Initialize metrics collector.

        Args:
            config: Metrics configuration
        """
        self.config = config or MetricConfig()
        self.registry = CollectorRegistry()
        self._snapshot: Dict[Tuple[str, ...], int] = defaultdict(int)
        self._lock = Lock()

        if not self.config.enabled:
            logger.info("Metrics collection disabled")
            return

        self._init_prometheus_metrics()
        logger.debug("Metrics collector initialized")

    def _init_prometheus_metrics(self):
        ns = self.config.namespace

        self.rate_limit_decisions = Counter(
            f'{ns}_rate_limit_decisions_total',
            'Rate limit decisions by action and outcome',
            ['action', 'outcome'],
            registry=self.registry,
        )
        self.rate_limit_fallbacks = Counter(
            f'{ns}_rate_limit_fallbacks_total',
            'Rate limit checks served by the local fallback store',
            ['action'],
            registry=self.registry,
        )
        self.circuit_transitions = Counter(
            f'{ns}_circuit_transitions_total',
            'Circuit breaker phase transitions',
            ['dependency', 'to_phase'],
            registry=self.registry,
        )
        self.retry_attempts = Counter(
            f'{ns}_retry_attempts_total',
            'Retry orchestrator attempts by outcome',
            ['outcome'],
            registry=self.registry,
        )
        self.lockouts = Counter(
            f'{ns}_lockouts_total',
            'Account lockouts by escalation level',
            ['level'],
            registry=self.registry,
        )

    def _bump(self, *key: str) -> None:
        with self._lock:
            self._snapshot[key] += 1

    async def record_rate_limit_decision(self, action: str, allowed: bool) -> None:
        """Record a rate limit decision."""
        if not self.config.enabled:
            return
        outcome = "allowed" if allowed else "denied"
        try:
            self.rate_limit_decisions.labels(action=action, outcome=outcome).inc()
            self._bump("rate_limit_decisions", action, outcome)
        except Exception as e:
            logger.error(f"Error recording rate limit decision: {e}")

    async def record_rate_limit_fallback(self, action: str) -> None:
        """Record a check served by the local fallback."""
        if not self.config.enabled:
            return
        try:
            self.rate_limit_fallbacks.labels(action=action).inc()
            self._bump("rate_limit_fallbacks", action)
        except Exception as e:
            logger.error(f"Error recording rate limit fallback: {e}")

    async def record_circuit_transition(self, dependency: str, to_phase: str) -> None:
        """Record a circuit breaker transition."""
        if not self.config.enabled:
            return
        try:
            self.circuit_transitions.labels(dependency=dependency, to_phase=to_phase).inc()
            self._bump("circuit_transitions", dependency, to_phase)
        except Exception as e:
            logger.error(f"Error recording circuit transition: {e}")

    async def record_retry_attempt(self, outcome: str) -> None:
        """Record a retry attempt outcome (success, retry, exhausted, aborted)."""
        if not self.config.enabled:
            return
        try:
            self.retry_attempts.labels(outcome=outcome).inc()
            self._bump("retry_attempts", outcome)
        except Exception as e:
            logger.error(f"Error recording retry attempt: {e}")

    async def record_lockout(self, level: int) -> None:
        """Record an account lockout at the given escalation level."""
        if not self.config.enabled:
            return
        try:
            self.lockouts.labels(level=str(level)).inc()
            self._bump("lockouts", str(level))
        except Exception as e:
            logger.error(f"Error recording lockout: {e}")

    def get_snapshot(self) -> Dict[str, int]:
        """
        Get the in-process counter values.

        Keys are the metric name followed by its label values, joined with ':'
        (e.g. 'rate_limit_decisions:publish_post:denied').
        """
        with self._lock:
            return {":".join(key): value for key, value in self._snapshot.items()}

    def export(self) -> bytes:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry)

    def reset(self) -> None:
        """Clear the in-process snapshot (Prometheus counters are monotonic)."""
        with self._lock:
            self._snapshot.clear()
