"""
FlowGuard Demo Application

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

This demo replays the main FlowGuard flows against an in-memory store and a
manual clock, so it runs instantly and deterministically:
- Circuit breaker opening, probing and recovering
- Sliding-window rate limiting
- Retry with backoff around a flaky dependency
- Progressive account lockout
"""

import asyncio
import sys
from datetime import timedelta

from flowguard.circuit import CircuitBreaker, CircuitBreakerOptions
from flowguard.common.clock import ManualClock
from flowguard.core import Config, FlowGuard
from flowguard.errors import AccountLockedError, RateLimitExceeded
from flowguard.notify import MemoryNotifier
from flowguard.resilience import RetryPolicy
from flowguard.store import MemoryStore


async def run_demo() -> int:
    """Run every demo step. Returns a process exit code."""
    print("FlowGuard Demo Application")
    print("=" * 50)
    print()

    clock = ManualClock(start=0)
    store = MemoryStore(clock=clock)
    notifier = MemoryNotifier()

    async def no_sleep(seconds: float) -> None:
        clock.advance(int(seconds * 1000))

    guard = FlowGuard.new(Config(), store=store, clock=clock, notifier=notifier, sleep=no_sleep)

    # Step 1: circuit breaker
    print("Step 1: Circuit Breaker")
    print("-" * 40)
    breaker = CircuitBreaker(
        CircuitBreakerOptions(name="svc-x", failure_threshold=3, reset_timeout=timedelta(seconds=30)),
        store, clock=clock, notifier=notifier,
    )
    for t in (0, 1, 2):
        clock.set(t)
        await breaker.record_failure(RuntimeError("upstream 503"))
    decision = await breaker.can_execute()
    print(f"✓ After 3 failures: phase={decision.phase.value}, retry in {decision.retry_after_ms}ms")

    clock.set(30_002)
    decision = await breaker.can_execute()
    print(f"✓ After reset timeout: phase={decision.phase.value}, allowed={decision.allowed}")
    await breaker.record_success()
    await breaker.record_success()
    state = await breaker.get_state()
    print(f"✓ After 2 probe successes: phase={state.phase.value}")
    print(f"  - Notifications: {len(notifier.get_notifications(kind='circuit_open'))} circuit_open")
    print()

    # Step 2: rate limiting
    print("Step 2: Rate Limiting (magic_link, 3 per minute)")
    print("-" * 40)
    for attempt in range(1, 5):
        try:
            result = await guard.request_magic_link("demo@example.com")
            print(f"✓ Request {attempt} admitted, {result.remaining} remaining")
        except RateLimitExceeded as e:
            print(f"✗ Request {attempt} denied: {e.message}")
    print()

    # Step 3: retry
    print("Step 3: Retry Around a Flaky Dependency")
    print("-" * 40)
    calls = {"n": 0}

    async def flaky_publish(post_id: str) -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("socket hang up")
        return f"published {post_id}"

    policy = RetryPolicy(max_retries=3, base_delay=timedelta(milliseconds=100), jitter=False)
    result = await guard.run("tenant-1", "publish_post", "social-media", flaky_publish, "post-42",
                             retry_policy=policy)
    print(f"✓ {result} after {calls['n']} attempts")
    print()

    # Step 4: lockout
    print("Step 4: Progressive Lockout")
    print("-" * 40)

    async def wrong_password() -> bool:
        return False

    for attempt in range(1, 7):
        try:
            outcome = await guard.authenticate("victim@example.com", wrong_password, challenge_passed=True)
            label = "locked" if outcome.locked else f"{outcome.remaining_attempts} attempts left"
            print(f"  attempt {attempt}: rejected, {label}")
        except AccountLockedError as e:
            print(f"✗ attempt {attempt}: {e.message}")
    print(f"  - Notifications: {len(notifier.get_notifications(kind='account_locked'))} account_locked")
    print()

    try:
        await guard.rate_limiter.enforce("tenant-1", "gdpr_delete", 0, 60_000)
    except RateLimitExceeded:
        print("✓ A zero limit always rejects")

    await guard.close()
    print()
    print("Demo completed successfully!")
    return 0


def main() -> int:
    """Console entry point."""
    try:
        return asyncio.run(run_demo())
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
