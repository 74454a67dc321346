"""
Configuration module for FlowGuard.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from ..circuit import DEFAULT_DEPENDENCY_POLICIES, CircuitBreakerOptions
from ..errors import ConfigurationError
from ..lockout import LockoutPolicy
from ..monitoring import MetricConfig
from ..rate import RATE_LIMITS, RateLimitRule
from ..store import StorageConfig
from ..util.config import get_bool_config, get_config_value, get_duration_config, get_int_config


@dataclass
class Config:
    """Configuration for a FlowGuard instance"""
    redis_url: Optional[str] = None  # None selects the in-memory store
    key_prefix: str = "flowguard:"
    use_server_time: bool = True
    default_circuit: CircuitBreakerOptions = field(default_factory=CircuitBreakerOptions)
    circuit_policies: Dict[str, CircuitBreakerOptions] = field(
        default_factory=lambda: dict(DEFAULT_DEPENDENCY_POLICIES)
    )
    lockout: LockoutPolicy = field(default_factory=LockoutPolicy)
    rate_limits: Dict[str, RateLimitRule] = field(default_factory=lambda: dict(RATE_LIMITS))
    metrics: MetricConfig = field(default_factory=MetricConfig)

    @property
    def storage(self) -> StorageConfig:
        """Storage configuration derived from redis_url."""
        return StorageConfig(
            store_type="redis" if self.redis_url else "memory",
            connection_url=self.redis_url,
            key_prefix=self.key_prefix,
            use_server_time=self.use_server_time,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from FLOWGUARD_* environment variables"""
        defaults = CircuitBreakerOptions()
        lockout_defaults = LockoutPolicy()
        return cls(
            redis_url=get_config_value("redis_url"),
            key_prefix=get_config_value("key_prefix", "flowguard:"),
            use_server_time=get_bool_config("use_server_time", True),
            default_circuit=CircuitBreakerOptions(
                failure_threshold=get_int_config("circuit_failure_threshold", defaults.failure_threshold),
                reset_timeout=get_duration_config("circuit_reset_timeout", defaults.reset_timeout),
                success_threshold=get_int_config("circuit_success_threshold", defaults.success_threshold),
                monitor_window=get_duration_config("circuit_monitor_window", defaults.monitor_window),
            ),
            lockout=LockoutPolicy(
                max_attempts=get_int_config("lockout_max_attempts", lockout_defaults.max_attempts),
                challenge_threshold=get_int_config(
                    "lockout_challenge_threshold", lockout_defaults.challenge_threshold
                ),
                attempt_window=get_duration_config("lockout_window", lockout_defaults.attempt_window),
                decay_horizon=get_duration_config("lockout_decay", lockout_defaults.decay_horizon),
            ),
            metrics=MetricConfig(enabled=get_bool_config("metrics_enabled", True)),
        )

    def validate(self) -> bool:
        """Validate the configuration"""
        if self.redis_url is not None and not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ConfigurationError("redis_url must be a redis://, rediss:// or unix:// URL",
                                     "redis_url", self.redis_url)
        if self.default_circuit.reset_timeout <= timedelta(0):
            raise ConfigurationError("circuit reset_timeout must be positive",
                                     "reset_timeout", self.default_circuit.reset_timeout)
        if self.lockout.attempt_window <= timedelta(0):
            raise ConfigurationError("lockout attempt_window must be positive",
                                     "attempt_window", self.lockout.attempt_window)
        if self.lockout.challenge_threshold > self.lockout.max_attempts:
            raise ConfigurationError("lockout challenge_threshold cannot exceed max_attempts",
                                     "challenge_threshold", self.lockout.challenge_threshold)
        for action, rule in self.rate_limits.items():
            if rule.window_ms <= 0:
                raise ConfigurationError(f"rate limit window for '{action}' must be positive",
                                         "rate_limits", action)
        return True
