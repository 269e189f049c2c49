import itertools
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime

from models import NotificationType, utcnow


@dataclass(frozen=True)
class Notification:
    id: str
    user_id: int
    message: str
    type: NotificationType
    created_at: datetime


class NotificationQueue:
    """Per-user advisory messages held in process memory.

    Each user keeps at most ``limit`` entries; older ones fall off. Nothing
    is persisted, so a restart drops whatever was pending.
    """

    def __init__(self, limit: int = 20) -> None:
        self.limit = limit
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._by_user: dict[int, deque[Notification]] = {}

    def enqueue(
        self, user_id: int, message: str, type: NotificationType
    ) -> Notification:
        with self._lock:
            notification = Notification(
                id=str(next(self._ids)),
                user_id=user_id,
                message=message,
                type=NotificationType(type),
                created_at=utcnow(),
            )
            bucket = self._by_user.setdefault(user_id, deque(maxlen=self.limit))
            bucket.append(notification)
            return notification

    def list(self, user_id: int) -> list[Notification]:
        with self._lock:
            return list(self._by_user.get(user_id, ()))

    def clear(self, user_id: int) -> None:
        with self._lock:
            self._by_user.pop(user_id, None)
