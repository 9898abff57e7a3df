"""
User-facing notifications (toasts) for the scanning UI.
Leveled, timed messages with an optional undo affordance.
"""
import inspect
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


_LOG_LEVELS = {
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


@dataclass
class Notification:
    id: int
    level: NotificationLevel
    message: str
    title: Optional[str] = None
    duration_ms: int = 5000  # 0 = stays until dismissed
    created_at: float = 0.0
    on_undo: Optional[Callable] = field(default=None, repr=False)

    @property
    def undoable(self) -> bool:
        return self.on_undo is not None

    def expired(self, now: float) -> bool:
        if self.duration_ms <= 0:
            return False
        return (now - self.created_at) * 1000 >= self.duration_ms


class NotificationCenter:

    def __init__(self, default_duration_ms: int = 5000, clock: Callable[[], float] = time.monotonic):
        self.default_duration_ms = default_duration_ms
        self._clock = clock
        self._ids = itertools.count(1)
        self._items: Dict[int, Notification] = {}

    def add(
        self,
        level: NotificationLevel,
        message: str,
        *,
        title: Optional[str] = None,
        duration_ms: Optional[int] = None,
        on_undo: Optional[Callable] = None,
    ) -> Notification:
        notification = Notification(
            id=next(self._ids),
            level=NotificationLevel(level),
            message=message,
            title=title,
            duration_ms=self.default_duration_ms if duration_ms is None else duration_ms,
            created_at=self._clock(),
            on_undo=on_undo,
        )
        self._items[notification.id] = notification
        logger.log(_LOG_LEVELS[notification.level], "[%s] %s", notification.level.value, message)
        return notification

    def success(self, message: str, **options) -> Notification:
        return self.add(NotificationLevel.SUCCESS, message, **options)

    def error(self, message: str, **options) -> Notification:
        return self.add(NotificationLevel.ERROR, message, **options)

    def warning(self, message: str, **options) -> Notification:
        return self.add(NotificationLevel.WARNING, message, **options)

    def info(self, message: str, **options) -> Notification:
        return self.add(NotificationLevel.INFO, message, **options)

    def active(self) -> List[Notification]:
        """Notifications still on screen, oldest first. Expired ones are pruned."""
        now = self._clock()
        for key in [k for k, n in self._items.items() if n.expired(now)]:
            del self._items[key]
        return list(self._items.values())

    def get(self, notification_id: int) -> Optional[Notification]:
        notification = self._items.get(notification_id)
        if notification is None or notification.expired(self._clock()):
            return None
        return notification

    def dismiss(self, notification_id: int) -> bool:
        return self._items.pop(notification_id, None) is not None

    async def undo(self, notification_id: int) -> bool:
        """Run the undo affordance of a live notification, then dismiss it."""
        notification = self.get(notification_id)
        if notification is None or notification.on_undo is None:
            return False
        self.dismiss(notification_id)
        result = notification.on_undo()
        if inspect.isawaitable(result):
            await result
        return True
