"""
FlowGuard Python Package

Resilience and abuse-control layer: circuit breakers, sliding-window rate
limiting, classified retries and progressive account lockout over a shared store.
"""

__version__ = "0.1.0"
__author__ = "Mauricio Fernandez"
__email__ = "mauricio.fernandez@siemens.com"

from .core.guard import FlowGuard
from .core.config import Config
from .common.clock import Clock, SystemClock, ManualClock
from .errors import (
    ErrorKind,
    FlowGuardError,
    RateLimitExceeded,
    AccountLockedError,
    ChallengeRequiredError,
    CircuitOpenError,
)
from .store import KeyValueStore, MemoryStore, RedisStore
from .circuit import CircuitBreaker, CircuitBreakerOptions, CircuitPhase
from .rate import RateLimiter, RateLimitResult, RATE_LIMITS
from .resilience import Retry, RetryPolicy
from .lockout import LockoutManager, LockoutPolicy, AuthenticationGuard

__all__ = [
    "FlowGuard",
    "Config",
    "Clock",
    "SystemClock",
    "ManualClock",
    "ErrorKind",
    "FlowGuardError",
    "RateLimitExceeded",
    "AccountLockedError",
    "ChallengeRequiredError",
    "CircuitOpenError",
    "KeyValueStore",
    "MemoryStore",
    "RedisStore",
    "CircuitBreaker",
    "CircuitBreakerOptions",
    "CircuitPhase",
    "RateLimiter",
    "RateLimitResult",
    "RATE_LIMITS",
    "Retry",
    "RetryPolicy",
    "LockoutManager",
    "LockoutPolicy",
    "AuthenticationGuard",
]
