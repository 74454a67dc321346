# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package rate provides distributed sliding-window rate limiting for FlowGuard.
"""

from .limiter import (
    RateLimitRule,
    RateLimitResult,
    RateLimiter,
    RATE_LIMITS,
    MINUTE_MS,
    HOUR_MS,
    DAY_MS,
)

__all__ = [
    'RateLimitRule',
    'RateLimitResult',
    'RateLimiter',
    'RATE_LIMITS',
    'MINUTE_MS',
    'HOUR_MS',
    'DAY_MS',
]
