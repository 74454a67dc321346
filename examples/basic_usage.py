"""
Basic FlowGuard usage example.

This example demonstrates the fundamental FlowGuard operations:
- Creating a FlowGuard instance
- Running a handler operation through rate limit, breaker and retry
- Reading rate limit headers
- Guarded sign-in with lockout
"""

import asyncio
from datetime import timedelta

from flowguard import FlowGuard, Config
from flowguard.errors import FlowGuardError, RateLimitExceeded
from flowguard.resilience import RetryPolicy


async def generate_caption(topic: str) -> str:
    await asyncio.sleep(0.01)
    return f"Five things nobody tells you about {topic}"


async def basic_example():
    """Demonstrate basic FlowGuard usage"""
    print("Basic FlowGuard Example")
    print("=" * 30)

    # 1. Create FlowGuard instance (in-memory store without redis_url)
    guard = FlowGuard.new(Config())
    print("✓ Created FlowGuard instance")

    try:
        # 2. Run an operation against an external dependency
        caption = await guard.run(
            "user-42",
            "content_generation",
            "openai",
            generate_caption,
            "sourdough",
            retry_policy=RetryPolicy(max_retries=2, base_delay=timedelta(milliseconds=200)),
            timeout=timedelta(seconds=5),
        )
        print(f"✓ Generated: {caption}")

        # 3. Inspect the remaining budget
        result = await guard.check_rate_limit("user-42", "gdpr_export")
        print(f"✓ Rate limit headers: {result.to_headers()}")

        # 4. Guarded sign-in
        async def verify_password(password: str) -> bool:
            return password == "correct horse"

        outcome = await guard.authenticate("user@example.com", verify_password, "wrong")
        print(f"✓ Failed sign-in recorded, {outcome.remaining_attempts} attempts left")

        outcome = await guard.authenticate("user@example.com", verify_password, "correct horse")
        print(f"✓ Signed in: {outcome.authenticated}")

    except RateLimitExceeded as e:
        print(f"✗ Rate limited, retry after {e.retry_after_seconds}s")
    except FlowGuardError as e:
        print(f"✗ {e}")
    finally:
        # 5. Cleanup
        await guard.close()
        print("✓ FlowGuard instance closed")


if __name__ == "__main__":
    asyncio.run(basic_example())
