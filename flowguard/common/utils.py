"""
Common utilities and helper functions for FlowGuard.
"""

import inspect
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union


def make_key(*parts: str) -> str:
    """Join key parts with ':' (e.g. make_key('ratelimit', 'publish_post', 'u1'))."""
    return ":".join(str(part) for part in parts)


def millis_to_datetime(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)


def millis_to_iso(millis: int) -> str:
    """Convert epoch milliseconds to an ISO 8601 string."""
    return millis_to_datetime(millis).isoformat()


def ceil_seconds(millis: Union[int, float]) -> int:
    """Round a millisecond duration up to whole seconds (never negative)."""
    if millis <= 0:
        return 0
    return int(math.ceil(millis / 1000.0))


def format_duration(seconds: Union[int, float]) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string, e.g. "45 seconds", "5 minutes", "1 hour 30 minutes"
    """
    seconds = int(math.ceil(max(0, seconds)))
    if seconds < 60:
        return f"{seconds} second{'' if seconds == 1 else 's'}"
    if seconds < 3600:
        minutes, remaining_seconds = divmod(seconds, 60)
        text = f"{minutes} minute{'' if minutes == 1 else 's'}"
        if remaining_seconds:
            text += f" {remaining_seconds} second{'' if remaining_seconds == 1 else 's'}"
        return text
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    text = f"{hours} hour{'' if hours == 1 else 's'}"
    if minutes:
        text += f" {minutes} minute{'' if minutes == 1 else 's'}"
    return text


def format_wait(millis: Optional[Union[int, float]]) -> str:
    """Human-readable wait time for a retry-after value in milliseconds."""
    if not millis or millis <= 0:
        return "now"
    return format_duration(millis / 1000.0)

async def call_maybe_async(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Call a plain or async callable and return its (awaited) result."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
