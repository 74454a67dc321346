"""
Circuit breaker composed with retry.

The breaker wraps the retry loop: admission is checked once, the retried
operation runs to its final outcome, and that single outcome is recorded on
the breaker. Retries therefore never count as separate breaker failures, and
an open circuit is never retried.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from ..circuit import CircuitBreaker
from .retry import Retry, RetryPolicy

logger = logging.getLogger(__name__)


class CircuitBreakerRetry:
    """Combined circuit breaker and retry."""

    def __init__(self, breaker: CircuitBreaker, retry: Optional[Retry] = None):
        self.breaker = breaker
        self.retry = retry or Retry()

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker and retry."""
        return await self.breaker.execute(self.retry.execute, func, *args, **kwargs)

    async def execute_with_timeout(self, func: Callable, timeout: Union[timedelta, int, float],
                                   *args, **kwargs) -> Any:
        """Execute with circuit breaker, retry and a per-attempt deadline."""
        return await self.breaker.execute(self.retry.execute_with_timeout, func, timeout, *args, **kwargs)


async def resilient_call(func: Callable, *args,
                         breaker: Optional[CircuitBreaker] = None,
                         retry_policy: Optional[RetryPolicy] = None,
                         timeout: Optional[Union[timedelta, int, float]] = None,
                         **kwargs) -> Any:
    """
    Call ``func`` with any combination of breaker, retry and timeout.

    Without a breaker this is a plain retried call.
    """
    retry = Retry(retry_policy)

    if breaker is not None:
        composed = CircuitBreakerRetry(breaker, retry)
        if timeout is not None:
            return await composed.execute_with_timeout(func, timeout, *args, **kwargs)
        return await composed.execute(func, *args, **kwargs)

    if timeout is not None:
        return await retry.execute_with_timeout(func, timeout, *args, **kwargs)
    return await retry.execute(func, *args, **kwargs)
