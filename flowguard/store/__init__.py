# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package store provides the shared key/value store adapter for FlowGuard.

This package implements:
- The KeyValueStore interface (get, set with expiry, delete)
- The sliding-window primitive used by the rate limiter
- An in-memory store for tests and degraded-mode fallback
- A Redis store whose window primitive is atomic across processes
- Storage factory and configuration
"""

from .types import (
    KeyValueStore,
    StorageError,
    StorageConnectionError,
    StorageStatus,
    WindowSnapshot,
    evaluate_window,
)

from .memory import MemoryStore

from .redis_store import RedisStore

from .factory import (
    StorageConfig,
    create_store,
    register_implementation,
    get_available_types,
)

__all__ = [
    # Core types
    'KeyValueStore',
    'StorageError',
    'StorageConnectionError',
    'StorageStatus',
    'WindowSnapshot',
    'evaluate_window',

    # Implementations
    'MemoryStore',
    'RedisStore',

    # Factory
    'StorageConfig',
    'create_store',
    'register_implementation',
    'get_available_types',
]
