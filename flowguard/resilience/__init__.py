# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package resilience provides the retry orchestrator and its composition with circuit breakers.

This package implements:
- Error classification (retryable / non-retryable)
- Exponential backoff with jitter
- Named retry policies for common dependency types
- Per-attempt timeouts
- Breaker-wraps-retry composition
"""

from .classify import (
    is_retryable_error,
    is_non_retryable_error,
    is_auth_error,
)

from .retry import (
    RetryPolicy,
    Retry,
    calculate_delay,
    TimeoutConfig,
    Timeout,
    with_retry,
    with_retry_and_timeout,
    retry,
    DEFAULT_RETRY_POLICY,
    DATABASE_RETRY_POLICY,
    EXTERNAL_API_RETRY_POLICY,
    SOCIAL_MEDIA_RETRY_POLICY,
    CONTENT_GENERATION_RETRY_POLICY,
)

from .circuit import (
    CircuitBreakerRetry,
    resilient_call,
)

__all__ = [
    # Classification
    'is_retryable_error',
    'is_non_retryable_error',
    'is_auth_error',

    # Retry
    'RetryPolicy',
    'Retry',
    'calculate_delay',
    'TimeoutConfig',
    'Timeout',
    'with_retry',
    'with_retry_and_timeout',
    'retry',
    'DEFAULT_RETRY_POLICY',
    'DATABASE_RETRY_POLICY',
    'EXTERNAL_API_RETRY_POLICY',
    'SOCIAL_MEDIA_RETRY_POLICY',
    'CONTENT_GENERATION_RETRY_POLICY',

    # Composition
    'CircuitBreakerRetry',
    'resilient_call',
]
