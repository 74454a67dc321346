"""
Main FlowGuard facade.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Wires the rate limiter, circuit breakers, retry orchestrator and lockout state
machine onto one store and runs the handler control flow: rate limit first,
then the dependency's breaker, then the retried call, whose final outcome feeds
back into the breaker.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Union

from ..circuit import CircuitBreakerRegistry
from ..common.clock import Clock
from ..errors import ConfigurationError
from ..lockout import AuthenticationGuard, AuthenticationOutcome, LockoutManager
from ..monitoring import MetricsCollector
from ..notify import LoggingNotifier, Notifier
from ..rate import RATE_LIMITS, RateLimiter, RateLimitResult
from ..resilience import CircuitBreakerRetry, Retry, RetryPolicy
from ..store import KeyValueStore, create_store
from .config import Config


class FlowGuard:
    """
    Resilience and abuse-control layer for stateless request handlers.
    Use FlowGuard.new() to construct an instance.
    """

    def __init__(
        self,
        config: Config,
        store: KeyValueStore,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        """
        Initialize FlowGuard instance.

        Args:
            config: FlowGuard configuration
            store: Shared store for breaker, rate-limit and lockout state
            clock: Time source (defaults to the store's clock)
            notifier: Sink for circuit-open and account-locked notifications
                (defaults to logging)
            metrics: Metrics collector (defaults to one built from config.metrics)
            sleep: Coroutine function used between retry attempts
        """
        self.config = config
        self.store = store
        self.clock = clock or store.clock
        self.notifier = notifier or LoggingNotifier()
        self.metrics = metrics or MetricsCollector(config.metrics)
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

        self.rate_limiter = RateLimiter(store, clock=self.clock, metrics=self.metrics)
        self.breakers = CircuitBreakerRegistry(
            store,
            clock=self.clock,
            policies=config.circuit_policies,
            default_options=config.default_circuit,
            notifier=self.notifier,
            metrics=self.metrics,
        )
        self.lockout = LockoutManager(
            store, config.lockout, clock=self.clock, notifier=self.notifier, metrics=self.metrics
        )
        self.auth_guard = AuthenticationGuard(
            self.lockout,
            rate_limiter=self.rate_limiter,
            magic_link_rule=config.rate_limits.get('magic_link', RATE_LIMITS['magic_link']),
        )

    @classmethod
    def new(
        cls,
        config: Optional[Config] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        **kwargs,
    ) -> "FlowGuard":
        """
        Create a new FlowGuard instance.

        Args:
            config: Configuration (defaults to Config())
            store: Store to use (defaults to the one described by config)
            clock: Optional time source
            notifier: Optional notification sink

        Returns:
            FlowGuard instance

        Raises:
            ConfigurationError: If configuration is invalid

        Example:
            guard = FlowGuard.new(Config(redis_url="redis://localhost:6379/0"))
            result = await guard.run(user_id, "publish_post", "social-media", publish, post)
        """
        config = config or Config()
        config.validate()
        store = store or create_store(config.storage, clock)
        return cls(config, store, clock=clock, notifier=notifier, **kwargs)

    async def run(
        self,
        subject: str,
        action: str,
        dependency: Optional[str],
        operation: Callable,
        *args,
        limit: Optional[int] = None,
        window_ms: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[Union[timedelta, int, float]] = None,
        **kwargs,
    ) -> Any:
        """
        Run an operation for a subject through rate limit, breaker and retry.

        Args:
            subject: Who is acting (user or tenant id)
            action: Rate-limited action name
            dependency: Breaker name for the external dependency (None skips the breaker)
            operation: Callable to run, with *args and **kwargs
            limit: Limit override (defaults to the action's configured rule)
            window_ms: Window override
            retry_policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            timeout: Per-attempt deadline

        Raises:
            RateLimitExceeded: If the subject is over its limit for the action
            CircuitOpenError: If the dependency's breaker is open
            Exception: The operation's final error, unchanged
        """
        if limit is None or window_ms is None:
            rule = self.config.rate_limits.get(action)
            if rule is None:
                raise ConfigurationError(f"No rate limit rule for action '{action}'", "action", action)
            limit = rule.limit if limit is None else limit
            window_ms = rule.window_ms if window_ms is None else window_ms

        await self.rate_limiter.enforce(subject, action, limit, window_ms)

        retry = Retry(retry_policy, sleep=self._sleep, metrics=self.metrics)
        if dependency is None:
            if timeout is not None:
                return await retry.execute_with_timeout(operation, timeout, *args, **kwargs)
            return await retry.execute(operation, *args, **kwargs)

        composed = CircuitBreakerRetry(self.breakers.get(dependency), retry)
        if timeout is not None:
            return await composed.execute_with_timeout(operation, timeout, *args, **kwargs)
        return await composed.execute(operation, *args, **kwargs)

    async def check_rate_limit(self, subject: str, action: str) -> RateLimitResult:
        """Check an action's configured rule without raising on denial."""
        rule = self.config.rate_limits.get(action)
        if rule is None:
            raise ConfigurationError(f"No rate limit rule for action '{action}'", "action", action)
        return await self.rate_limiter.check_rule(subject, rule)

    async def authenticate(self, identity: str, verify: Callable, *args,
                           challenge_passed: bool = False,
                           context: Optional[Dict[str, Any]] = None,
                           **kwargs) -> AuthenticationOutcome:
        """Guarded sign-in; see AuthenticationGuard.authenticate."""
        return await self.auth_guard.authenticate(
            identity, verify, *args, challenge_passed=challenge_passed, context=context, **kwargs
        )

    async def request_magic_link(self, identity: str) -> RateLimitResult:
        """Rate-limit a magic-link request; raises RateLimitExceeded on denial."""
        return await self.auth_guard.request_magic_link(identity)

    async def close(self) -> None:
        """Release the store."""
        await self.store.close()
        self.logger.debug("FlowGuard closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
