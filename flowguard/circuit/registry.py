"""
Per-dependency breaker registry with configurable policies.
"""

import dataclasses
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from ..common.clock import Clock
from ..notify import Notifier
from ..store import KeyValueStore
from .circuit import CircuitBreaker, CircuitBreakerOptions, CircuitState

logger = logging.getLogger(__name__)


DEFAULT_DEPENDENCY_POLICIES: Dict[str, CircuitBreakerOptions] = {
    'lovable-ai': CircuitBreakerOptions(
        name='lovable-ai', failure_threshold=3, reset_timeout=timedelta(seconds=60)
    ),
    'openai': CircuitBreakerOptions(
        name='openai', failure_threshold=3, reset_timeout=timedelta(seconds=60)
    ),
    'social-media': CircuitBreakerOptions(
        name='social-media', failure_threshold=5, reset_timeout=timedelta(seconds=30)
    ),
    'database': CircuitBreakerOptions(
        name='database', failure_threshold=10, reset_timeout=timedelta(seconds=10), success_threshold=3
    ),
}


class CircuitBreakerRegistry:
    """
    Creates breakers lazily by dependency name.

    A name found in ``policies`` uses that policy, anything else uses
    ``default_options``. All breakers share the same store, clock, notifier
    and metrics.
    """

    def __init__(self, store: KeyValueStore, clock: Optional[Clock] = None,
                 policies: Optional[Dict[str, CircuitBreakerOptions]] = None,
                 default_options: Optional[CircuitBreakerOptions] = None,
                 notifier: Optional[Notifier] = None, metrics: Any = None):
        self.store = store
        self.clock = clock
        self.policies = dict(DEFAULT_DEPENDENCY_POLICIES if policies is None else policies)
        self.default_options = default_options or CircuitBreakerOptions()
        self.notifier = notifier
        self.metrics = metrics
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        """Get (or create) the breaker for a dependency."""
        breaker = self._breakers.get(name)
        if breaker is None:
            base = self.policies.get(name, self.default_options)
            options = dataclasses.replace(base, name=name)
            breaker = CircuitBreaker(options, self.store, clock=self.clock,
                                     notifier=self.notifier, metrics=self.metrics)
            self._breakers[name] = breaker
            logger.debug(f"Created circuit breaker '{name}' "
                         f"(threshold={options.failure_threshold}, reset={options.reset_timeout})")
        return breaker

    def names(self) -> List[str]:
        """Names of the breakers created so far."""
        return list(self._breakers.keys())

    async def get_all_states(self) -> Dict[str, CircuitState]:
        """Get persisted state for every known breaker."""
        return {name: await breaker.get_state() for name, breaker in self._breakers.items()}

    async def reset_all(self) -> None:
        """Reset every known breaker."""
        for breaker in self._breakers.values():
            await breaker.reset()


async def with_circuit_breaker(name: str, operation: Callable, store: KeyValueStore,
                               clock: Optional[Clock] = None, **overrides) -> Any:
    """
    Run a zero-argument operation behind a one-off breaker for ``name``.

    The breaker state is shared through ``store``. Keyword overrides replace
    fields of the default options, e.g. ``failure_threshold=3``.
    """
    base = DEFAULT_DEPENDENCY_POLICIES.get(name, CircuitBreakerOptions())
    options = dataclasses.replace(base, name=name, **overrides)
    return await CircuitBreaker(options, store, clock=clock).execute(operation)
