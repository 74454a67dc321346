"""
Notification sinks for FlowGuard.

Breaker-open and account-locked events are handed to a Notifier. Delivery is
best effort: a failing notifier is logged and never changes an admission
decision.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from ..common.clock import default_clock
from ..common.utils import millis_to_iso


logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Notification severity."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# Notification kinds
CIRCUIT_OPEN = "circuit_open"
ACCOUNT_LOCKED = "account_locked"


@dataclass
class Notification:
    """A single event handed to a notifier."""
    kind: str
    subject: str
    severity: Severity = Severity.WARNING
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=lambda: default_clock().now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'kind': self.kind,
            'subject': self.subject,
            'severity': self.severity.value,
            'details': self.details,
            'timestamp': millis_to_iso(self.timestamp),
        }


class Notifier(ABC):
    """Interface for notification sinks."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver a notification."""
        pass


class LoggingNotifier(Notifier):
    """Writes notifications to a logger."""

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.CRITICAL: logging.CRITICAL,
    }

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    async def notify(self, notification: Notification) -> None:
        self.log.log(
            self._LEVELS.get(notification.severity, logging.WARNING),
            f"[{notification.kind}] {notification.subject}: {notification.details}",
        )


class MemoryNotifier(Notifier):
    """Keeps the most recent notifications in memory (tests and dashboards)."""

    def __init__(self, max_entries: int = 1000):
        self._entries: Deque[Notification] = deque(maxlen=max_entries)

    async def notify(self, notification: Notification) -> None:
        self._entries.append(notification)

    def get_notifications(self, kind: Optional[str] = None,
                          subject: Optional[str] = None) -> List[Notification]:
        """Get stored notifications, optionally filtered by kind and subject."""
        return [
            n for n in self._entries
            if (kind is None or n.kind == kind) and (subject is None or n.subject == subject)
        ]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


NotificationCallback = Callable[[Notification], Union[None, Awaitable[None]]]


class CallbackNotifier(Notifier):
    """Forwards notifications to a plain or async callable."""

    def __init__(self, callback: NotificationCallback):
        self.callback = callback

    async def notify(self, notification: Notification) -> None:
        result = self.callback(notification)
        if hasattr(result, "__await__"):
            await result


async def dispatch(notifier: Optional[Notifier], notification: Notification) -> bool:
    """
    Deliver a notification, logging and swallowing delivery failures.

    Returns:
        True if the notifier accepted the notification
    """
    if notifier is None:
        return False
    try:
        await notifier.notify(notification)
        return True
    except Exception as e:
        logger.error(f"Failed to deliver {notification.kind} notification for {notification.subject}: {e}")
        return False
