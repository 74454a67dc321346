"""
Retry orchestrator with classified exponential backoff and jitter.
"""

import asyncio
import dataclasses
import logging
import random
from dataclasses import dataclass, field
from datetime import timedelta
from functools import wraps
from typing import Any, Callable, Optional, Union

from ..common.clock import to_millis
from ..common.utils import call_maybe_async
from ..errors import OperationTimeoutError
from .classify import is_auth_error, is_non_retryable_error, is_retryable_error

logger = logging.getLogger(__name__)


RetryPredicate = Callable[[BaseException], bool]
RetryObserver = Callable[[int, BaseException, int], None]


@dataclass
class RetryPolicy:
    """
    Retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (max_retries + 1 attempts total)
        base_delay: Delay before the first retry, before jitter
        max_delay: Upper bound on every delay, jitter included
        backoff_multiplier: Growth factor per attempt
        jitter: Multiply each delay by a uniform factor in [1.0, 1.5)
        is_retryable: Decides retryability for errors not classified as
            non-retryable. When None, every such error is retried.
        on_retry: Called as on_retry(attempt_number, error, next_delay_ms)
            before each sleep
    """
    max_retries: int = 3
    base_delay: timedelta = field(default_factory=lambda: timedelta(seconds=1))
    max_delay: timedelta = field(default_factory=lambda: timedelta(seconds=30))
    backoff_multiplier: float = 2.0
    jitter: bool = True
    is_retryable: Optional[RetryPredicate] = None
    on_retry: Optional[RetryObserver] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def calculate_delay(policy: RetryPolicy, attempt: int) -> int:
    """
    Delay in milliseconds before retry number ``attempt + 1``.

    The exponential delay is capped at max_delay. Jitter multiplies it by a
    factor in [1.0, 1.5) and the result is capped again, so no sleep ever
    exceeds max_delay.
    """
    max_delay = to_millis(policy.max_delay)
    delay = min(to_millis(policy.base_delay) * (policy.backoff_multiplier ** attempt), max_delay)

    if policy.jitter:
        delay = min(delay * (1 + random.random() * 0.5), max_delay)

    return int(delay)


class Retry:
    """Retry handler with classified exponential backoff."""

    def __init__(self, policy: Optional[RetryPolicy] = None,
                 sleep: Optional[Callable[[float], Any]] = None,
                 metrics: Any = None):
        """
        Args:
            policy: Retry policy (DEFAULT_RETRY_POLICY when None)
            sleep: Coroutine function used to wait between attempts, in seconds
            metrics: Optional MetricsCollector
        """
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep or asyncio.sleep
        self.metrics = metrics
        self._attempt_count = 0

    @property
    def attempt_count(self) -> int:
        """Attempts made by the most recent execute call."""
        return self._attempt_count

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with retry logic."""
        return await self._run(lambda: call_maybe_async(func, *args, **kwargs))

    async def execute_with_timeout(self, func: Callable,
                                   timeout: Union[timedelta, int, float],
                                   *args, **kwargs) -> Any:
        """
        Execute function with retry logic, bounding each attempt by ``timeout``.

        An attempt that runs past the deadline raises OperationTimeoutError,
        which is transient and therefore retried.
        """
        guard = Timeout(TimeoutConfig(timeout=_as_timedelta(timeout)))
        return await self._run(lambda: guard.execute(func, *args, **kwargs))

    async def _run(self, attempt_fn: Callable[[], Any]) -> Any:
        policy = self.policy

        for attempt in range(policy.max_retries + 1):
            self._attempt_count = attempt + 1
            try:
                result = await attempt_fn()
            except Exception as e:
                if is_non_retryable_error(e):
                    logger.debug(f"Non-retryable error, not retrying: {e}")
                    await self._record("aborted")
                    raise

                if policy.is_retryable is not None and not policy.is_retryable(e):
                    logger.debug(f"Error rejected by retry predicate: {e}")
                    await self._record("aborted")
                    raise

                if attempt == policy.max_retries:
                    logger.error(f"Operation failed after {attempt + 1} attempts: {e}")
                    await self._record("exhausted")
                    raise

                delay_ms = calculate_delay(policy, attempt)
                self._notify_retry(attempt + 1, e, delay_ms)
                logger.warning(
                    f"Attempt {attempt + 1}/{policy.max_retries} failed, "
                    f"retrying in {delay_ms}ms: {e}"
                )
                await self._record("retry")
                await self._sleep(delay_ms / 1000.0)
            else:
                if attempt > 0:
                    logger.info(f"Operation succeeded on attempt {attempt + 1}")
                await self._record("success")
                return result

    def _notify_retry(self, attempt_number: int, error: BaseException, delay_ms: int) -> None:
        if self.policy.on_retry is None:
            return
        try:
            self.policy.on_retry(attempt_number, error, delay_ms)
        except Exception as e:
            logger.error(f"Retry observer raised, ignoring: {e}")

    async def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            await self.metrics.record_retry_attempt(outcome)


def _as_timedelta(value: Union[timedelta, int, float]) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(milliseconds=value)


@dataclass
class TimeoutConfig:
    """Timeout configuration."""
    timeout: timedelta
    on_timeout: Optional[Callable[[int], None]] = None


class Timeout:
    """Single-attempt deadline."""

    def __init__(self, config: TimeoutConfig):
        self.config = config

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with timeout.

        Only awaitable work can be interrupted: a blocking synchronous callable
        runs to completion before the deadline is checked.
        """
        timeout_ms = to_millis(self.config.timeout)

        try:
            return await asyncio.wait_for(
                call_maybe_async(func, *args, **kwargs),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError as e:
            if self.config.on_timeout:
                self.config.on_timeout(timeout_ms)
            raise OperationTimeoutError(timeout_ms, cause=e) from e


def _social_media_retryable(error: BaseException) -> bool:
    # Auth failures against social platforms need a reconnect, not a retry
    if is_auth_error(error):
        return False
    return is_retryable_error(error)


DEFAULT_RETRY_POLICY = RetryPolicy()

DATABASE_RETRY_POLICY = RetryPolicy(
    max_retries=5,
    base_delay=timedelta(milliseconds=500),
    max_delay=timedelta(seconds=10),
)

EXTERNAL_API_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    base_delay=timedelta(seconds=2),
    max_delay=timedelta(seconds=30),
)

SOCIAL_MEDIA_RETRY_POLICY = RetryPolicy(
    max_retries=2,
    base_delay=timedelta(seconds=5),
    max_delay=timedelta(seconds=30),
    is_retryable=_social_media_retryable,
)

CONTENT_GENERATION_RETRY_POLICY = RetryPolicy(
    max_retries=2,
    base_delay=timedelta(seconds=2),
    max_delay=timedelta(seconds=20),
    is_retryable=is_retryable_error,
)


async def with_retry(operation: Callable, policy: Optional[RetryPolicy] = None, **overrides) -> Any:
    """
    Run a zero-argument operation under a retry policy.

    Keyword overrides replace individual policy fields, e.g.
    ``await with_retry(fetch, max_retries=5)``.
    """
    policy = policy or DEFAULT_RETRY_POLICY
    if overrides:
        policy = dataclasses.replace(policy, **overrides)
    return await Retry(policy).execute(operation)


async def with_retry_and_timeout(operation: Callable, timeout: Union[timedelta, int, float],
                                 policy: Optional[RetryPolicy] = None, **overrides) -> Any:
    """Run a zero-argument operation with a per-attempt deadline under a retry policy."""
    policy = policy or DEFAULT_RETRY_POLICY
    if overrides:
        policy = dataclasses.replace(policy, **overrides)
    return await Retry(policy).execute_with_timeout(operation, timeout)


def retry(policy: Optional[RetryPolicy] = None):
    """Decorator applying a retry policy to an async function."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await Retry(policy).execute(func, *args, **kwargs)
        return wrapper
    return decorator
