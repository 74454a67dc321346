"""
Error classification for the retry orchestrator.

Errors raised by FlowGuard itself carry an ErrorKind and are classified by it.
Anything else is classified by HTTP-like status attributes, by type, and
finally by message patterns.
"""

import asyncio
from typing import Optional

from ..errors import ErrorKind, FlowGuardError


RETRYABLE_PATTERNS = (
    'network',
    'timeout',
    'timed out',
    'econnreset',
    'econnrefused',
    'socket hang up',
    'service unavailable',
    '503',
    '502',
    '504',
    'temporarily unavailable',
    'rate limit',
    '429',
)

NON_RETRYABLE_PATTERNS = (
    'unauthorized',
    '401',
    'forbidden',
    '403',
    'not found',
    '404',
    'bad request',
    '400',
    'validation',
    'invalid',
)

AUTH_ERROR_PATTERNS = ('unauthorized', 'forbidden')

NON_RETRYABLE_STATUS = frozenset({400, 401, 403, 404, 422})
RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ('status', 'status_code'):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, 'response', None)
    value = getattr(response, 'status_code', None) if response is not None else None
    return value if isinstance(value, int) else None


def _message_of(error: BaseException) -> str:
    return str(error).lower()


def is_non_retryable_error(error: BaseException) -> bool:
    """
    Check whether an error must propagate without another attempt.

    FlowGuard errors are non-retryable unless their kind is TRANSIENT, so an
    open circuit or a rate-limit denial is never retried in a loop.
    """
    if isinstance(error, FlowGuardError):
        return error.kind != ErrorKind.TRANSIENT

    status = _status_of(error)
    if status is not None:
        return status in NON_RETRYABLE_STATUS

    if isinstance(error, PermissionError):
        return True

    message = _message_of(error)
    return any(pattern in message for pattern in NON_RETRYABLE_PATTERNS)


def is_retryable_error(error: BaseException) -> bool:
    """Check whether an error has a transient signature."""
    if isinstance(error, FlowGuardError):
        return error.kind == ErrorKind.TRANSIENT

    status = _status_of(error)
    if status is not None:
        return status in RETRYABLE_STATUS

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    message = _message_of(error)
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def is_auth_error(error: BaseException) -> bool:
    """Check whether an error looks like a rejected credential."""
    status = _status_of(error)
    if status in (401, 403):
        return True
    message = _message_of(error)
    return any(pattern in message for pattern in AUTH_ERROR_PATTERNS)
