"""
Factory for creating storage implementations.
Provides a centralized way to create and configure storage backends.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..common.clock import Clock
from ..errors import ConfigurationError
from .memory import MemoryStore
from .redis_store import RedisStore
from .types import KeyValueStore


@dataclass
class StorageConfig:
    """Configuration for storage backends."""
    store_type: str = "memory"
    connection_url: Optional[str] = None
    key_prefix: str = "flowguard:"
    use_server_time: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'store_type': self.store_type,
            'connection_url': self.connection_url,
            'key_prefix': self.key_prefix,
            'use_server_time': self.use_server_time,
        }


def _create_memory(config: StorageConfig, clock: Optional[Clock]) -> KeyValueStore:
    return MemoryStore(clock=clock)


def _create_redis(config: StorageConfig, clock: Optional[Clock]) -> KeyValueStore:
    return RedisStore(
        url=config.connection_url,
        key_prefix=config.key_prefix,
        use_server_time=config.use_server_time,
        clock=clock,
    )


# Registry of available storage implementations
_STORAGE_IMPLEMENTATIONS: Dict[str, Callable[[StorageConfig, Optional[Clock]], KeyValueStore]] = {
    'memory': _create_memory,
    'redis': _create_redis,
}


def create_store(config: Optional[StorageConfig] = None, clock: Optional[Clock] = None) -> KeyValueStore:
    """
    Create a store instance.

    Args:
        config: Storage configuration (defaults to an in-memory store)
        clock: Clock for expiry and window timestamps

    Returns:
        KeyValueStore instance

    Raises:
        ConfigurationError: If store_type is not supported
    """
    config = config or StorageConfig()
    factory = _STORAGE_IMPLEMENTATIONS.get(config.store_type.lower())
    if factory is None:
        raise ConfigurationError(
            f"Unsupported storage type: {config.store_type}",
            config_key="store_type",
            config_value=config.store_type,
        )
    return factory(config, clock)


def register_implementation(name: str,
                            factory: Callable[[StorageConfig, Optional[Clock]], KeyValueStore]) -> None:
    """Register a new storage implementation under a name."""
    _STORAGE_IMPLEMENTATIONS[name.lower()] = factory


def get_available_types() -> List[str]:
    """Get list of available storage types."""
    return list(_STORAGE_IMPLEMENTATIONS.keys())
