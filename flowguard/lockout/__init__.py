# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package lockout provides progressive account lockout for authentication flows.

This package implements:
- Failure counting within an attempt window
- Escalating lockout durations with a decaying level
- Secondary challenge (CAPTCHA) thresholds
- An authentication guard that rejects locked identities before verification
"""

from .lockout import (
    LockoutPolicy,
    LockoutRecord,
    LockoutLevel,
    FailureResult,
    LockoutStatus,
    LockoutManager,
)

from .guard import (
    AuthenticationOutcome,
    AuthenticationGuard,
)

__all__ = [
    'LockoutPolicy',
    'LockoutRecord',
    'LockoutLevel',
    'FailureResult',
    'LockoutStatus',
    'LockoutManager',
    'AuthenticationOutcome',
    'AuthenticationGuard',
]
