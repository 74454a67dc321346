# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Structured error handling for FlowGuard.

Every error raised by a FlowGuard component carries an explicit ErrorKind tag so
that callers can branch on the kind instead of probing untyped attributes:

- ADMISSION_DENIED: a rate limit or lockout rejected the call before any work
  started. Always carries a retry-after value.
- DEPENDENCY_UNAVAILABLE: a circuit breaker is open. Carries a retry-after value.
- TRANSIENT: an operation failure classified as retryable.
- PERMANENT: an operation failure classified as non-retryable.
- STORE_UNAVAILABLE: the backing store itself failed.
"""

from enum import Enum
from typing import Any, Dict, Optional

from ..common.utils import ceil_seconds, format_wait


class ErrorKind(str, Enum):
    """Kinds of failures surfaced by FlowGuard components."""

    ADMISSION_DENIED = "admission_denied"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    STORE_UNAVAILABLE = "store_unavailable"

    def __str__(self) -> str:
        return self.value


class FlowGuardError(Exception):
    """
    Base exception class for all FlowGuard errors.

    Provides the error kind, a message, an optional retry-after hint in
    milliseconds, additional details and the underlying cause.
    """

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.retry_after_ms = retry_after_ms
        self.details = details or {}
        self.cause = cause

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Retry-after rounded up to whole seconds (for Retry-After headers)."""
        if self.retry_after_ms is None:
            return None
        return ceil_seconds(self.retry_after_ms)

    @property
    def wait_text(self) -> str:
        """Human-readable wait time, e.g. '4 minutes 30 seconds'."""
        return format_wait(self.retry_after_ms)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.kind.value,
            "message": self.message,
            "details": self.details,
        }

        if self.retry_after_ms is not None:
            result["retry_after_ms"] = self.retry_after_ms
            result["retry_after"] = self.retry_after_seconds
            result["wait"] = self.wait_text

        if self.cause:
            result["cause"] = str(self.cause)

        return result

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class AdmissionDeniedError(FlowGuardError):
    """Raised when admission control rejects a call before it starts."""

    kind = ErrorKind.ADMISSION_DENIED


class RateLimitExceeded(AdmissionDeniedError):
    """Raised when a subject exceeds the limit for an action."""

    def __init__(self, subject: str, action: str, retry_after_ms: int,
                 limit: int = 0, reset_at: Optional[int] = None):
        self.subject = subject
        self.action = action
        self.limit = limit
        self.reset_at = reset_at
        message = (
            f"Rate limit exceeded for '{action}'. "
            f"Please try again in {format_wait(retry_after_ms)}"
        )
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            details={"subject": subject, "action": action, "limit": limit, "reset_at": reset_at},
        )


class AccountLockedError(AdmissionDeniedError):
    """Raised when an identity is locked out after repeated failed sign-ins."""

    def __init__(self, identity: str, retry_after_ms: int, level: int = 0):
        self.identity = identity
        self.level = level
        message = (
            "Account temporarily locked due to too many failed attempts. "
            f"Try again in {format_wait(retry_after_ms)}"
        )
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            details={"identity": identity, "level": level},
        )


class ChallengeRequiredError(AdmissionDeniedError):
    """Raised when a secondary challenge (CAPTCHA) must be passed first."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(
            "Additional verification required before signing in",
            retry_after_ms=0,
            details={"identity": identity},
        )


class CircuitOpenError(FlowGuardError):
    """Raised when a dependency's circuit breaker rejects a call."""

    kind = ErrorKind.DEPENDENCY_UNAVAILABLE

    def __init__(self, dependency: str, phase: str = "open",
                 retry_after_ms: Optional[int] = None, failure_count: int = 0):
        self.dependency = dependency
        self.phase = phase
        self.failure_count = failure_count
        message = (
            f"Service '{dependency}' is temporarily unavailable. "
            f"Please try again in {format_wait(retry_after_ms)}"
        )
        super().__init__(
            message,
            retry_after_ms=retry_after_ms,
            details={"dependency": dependency, "phase": phase, "failure_count": failure_count},
        )


class TransientOperationError(FlowGuardError):
    """An operation failure that is safe to retry."""

    kind = ErrorKind.TRANSIENT


class OperationTimeoutError(TransientOperationError):
    """Raised when a single attempt exceeds its deadline."""

    def __init__(self, timeout_ms: int, cause: Optional[BaseException] = None):
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Operation timed out after {timeout_ms}ms",
            details={"timeout_ms": timeout_ms},
            cause=cause,
        )


class PermanentOperationError(FlowGuardError):
    """An operation failure that must not be retried."""

    kind = ErrorKind.PERMANENT


class ConfigurationError(FlowGuardError):
    """Raised when there's a configuration error."""

    kind = ErrorKind.PERMANENT

    def __init__(self, message: str, config_key: Optional[str] = None,
                 config_value: Optional[Any] = None):
        super().__init__(message)
        self.config_key = config_key
        self.config_value = config_value

        if config_key:
            self.details["config_key"] = config_key
        if config_value is not None:
            self.details["config_value"] = str(config_value)


__all__ = [
    "ErrorKind",
    "FlowGuardError",
    "AdmissionDeniedError",
    "RateLimitExceeded",
    "AccountLockedError",
    "ChallengeRequiredError",
    "CircuitOpenError",
    "TransientOperationError",
    "OperationTimeoutError",
    "PermanentOperationError",
    "ConfigurationError",
]
