"""
Advanced FlowGuard features example.

This example demonstrates advanced FlowGuard features:
- Shared state in Redis (falls back to the local window if Redis is down)
- Custom dependency policies and state change callbacks
- Notifications and Prometheus metrics
- Error handling by error kind
"""

import asyncio
import logging
import os
from datetime import timedelta

from flowguard import FlowGuard, Config
from flowguard.circuit import CircuitBreakerOptions, StateTransition
from flowguard.errors import ErrorKind, FlowGuardError
from flowguard.notify import CallbackNotifier, Notification
from flowguard.resilience import SOCIAL_MEDIA_RETRY_POLICY


def on_state_change(transition: StateTransition) -> None:
    print(f"  ~ breaker {transition.name}: {transition.from_phase.value} -> {transition.to_phase.value}")


async def page_on_call(notification: Notification) -> None:
    print(f"  ! {notification.severity.value.upper()} {notification.kind}: {notification.subject}")


async def advanced_example():
    """Demonstrate advanced FlowGuard features"""
    print("Advanced FlowGuard Example")
    print("=" * 30)

    # 1. Configuration with a custom policy for one dependency
    config = Config(redis_url=os.environ.get("FLOWGUARD_REDIS_URL", "redis://localhost:6379/0"))
    config.circuit_policies["instagram"] = CircuitBreakerOptions(
        name="instagram",
        failure_threshold=2,
        reset_timeout=timedelta(seconds=10),
        on_state_change=on_state_change,
    )

    # 2. FlowGuard with a notifier callback
    guard = FlowGuard.new(config, notifier=CallbackNotifier(page_on_call))
    print("✓ Created FlowGuard instance backed by Redis")

    async def post_to_instagram(caption: str) -> str:
        raise ConnectionError("socket hang up")

    try:
        # 3. Failures open the instagram breaker
        for attempt in range(1, 4):
            try:
                await guard.run("tenant-7", "publish_post", "instagram", post_to_instagram,
                                "hello", retry_policy=SOCIAL_MEDIA_RETRY_POLICY)
            except FlowGuardError as e:
                if e.kind == ErrorKind.DEPENDENCY_UNAVAILABLE:
                    print(f"✗ attempt {attempt}: circuit open, retry in {e.retry_after_seconds}s")
                elif e.kind == ErrorKind.ADMISSION_DENIED:
                    print(f"✗ attempt {attempt}: rate limited")
                else:
                    raise
            except ConnectionError as e:
                print(f"✗ attempt {attempt}: {e}")

        # 4. Breaker states and metrics
        states = await guard.breakers.get_all_states()
        for name, state in states.items():
            print(f"✓ {name}: {state.phase.value} ({state.failure_count} failures)")

        print("✓ Metrics:")
        for key, value in sorted(guard.metrics.get_snapshot().items()):
            print(f"  - {key} = {value}")

        # 5. Administrative reset
        await guard.breakers.reset_all()
        await guard.rate_limiter.clear("tenant-7", "publish_post")
        print("✓ Breakers and rate limit reset")

    finally:
        await guard.close()
        print("✓ FlowGuard instance closed")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(advanced_example())
