"""
Authentication guard: lockout and challenge checks around credential verification.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..common.utils import call_maybe_async
from ..errors import AccountLockedError, ChallengeRequiredError, ConfigurationError
from ..rate import RATE_LIMITS, RateLimiter, RateLimitResult, RateLimitRule
from .lockout import LockoutManager

logger = logging.getLogger(__name__)


@dataclass
class AuthenticationOutcome:
    """Result of a guarded authentication attempt."""
    authenticated: bool
    locked: bool = False
    remaining_attempts: int = 0
    requires_challenge: bool = False
    retry_after_ms: int = 0
    level: int = 0
    result: Any = None


class AuthenticationGuard:
    """
    Rejects locked identities before their credentials are checked.

    Example:
        guard = AuthenticationGuard(LockoutManager(store))
        outcome = await guard.authenticate("a@example.com", check_password, password)
    """

    def __init__(self, lockout: LockoutManager, rate_limiter: Optional[RateLimiter] = None,
                 magic_link_rule: RateLimitRule = RATE_LIMITS['magic_link']):
        self.lockout = lockout
        self.rate_limiter = rate_limiter
        self.magic_link_rule = magic_link_rule

    async def authenticate(self, identity: str, verify: Callable, *args,
                           challenge_passed: bool = False,
                           context: Optional[Dict[str, Any]] = None,
                           **kwargs) -> AuthenticationOutcome:
        """
        Run ``verify(*args, **kwargs)`` unless the identity is locked.

        A truthy return value from ``verify`` counts as a successful sign-in and
        a falsy one as a failed attempt. Exceptions raised by ``verify`` are not
        credential failures and propagate without being recorded.

        Raises:
            AccountLockedError: If the identity is locked
            ChallengeRequiredError: If a challenge is due and was not passed
        """
        status = await self.lockout.status(identity)
        if status.locked:
            logger.info(f"Rejected sign-in for locked account {identity}")
            raise AccountLockedError(identity, status.retry_after_ms, status.level)

        if status.requires_challenge:
            if not challenge_passed:
                raise ChallengeRequiredError(identity)
            await self.lockout.satisfy_challenge(identity)

        result = await call_maybe_async(verify, *args, **kwargs)

        if result:
            await self.lockout.record_success(identity)
            return AuthenticationOutcome(
                authenticated=True,
                remaining_attempts=self.lockout.policy.max_attempts,
                level=status.level,
                result=result,
            )

        failure = await self.lockout.record_failure(identity, context)
        return AuthenticationOutcome(
            authenticated=False,
            locked=failure.locked,
            remaining_attempts=failure.remaining_attempts,
            requires_challenge=failure.requires_challenge,
            retry_after_ms=failure.lock_duration_ms,
            level=failure.level,
            result=result,
        )

    async def request_magic_link(self, identity: str) -> RateLimitResult:
        """
        Rate-limit a magic-link request for an identity.

        Raises:
            RateLimitExceeded: If too many links were requested recently
        """
        if self.rate_limiter is None:
            raise ConfigurationError("Magic link limiting requires a rate limiter", "rate_limiter")
        return await self.rate_limiter.enforce_rule(identity, self.magic_link_rule)
