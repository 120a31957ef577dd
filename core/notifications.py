"""Notifications - in-memory inbox per user."""

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from core.errors import NotFoundError


@dataclass
class Notification:
    user_id: str
    title: str
    message: str = ""
    level: str = "info"
    link: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))
    read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class NotificationService:
    def __init__(self) -> None:
        self._items: dict[str, Notification] = {}
        self._lock = threading.Lock()

    def notify(self, user_id: str, title: str, message: str = "", level: str = "info", link: str = "") -> Notification:
        notification = Notification(user_id=user_id, title=title, message=message, level=level, link=link)
        with self._lock:
            self._items[notification.id] = notification
        return notification

    def list(self, user_id: str, unread_only: bool = False, limit: Optional[int] = None) -> list[Notification]:
        with self._lock:
            items = [n for n in self._items.values() if n.user_id == user_id]
        if unread_only:
            items = [n for n in items if not n.read]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit] if limit else items

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        with self._lock:
            notification = self._items.get(notification_id)
            if notification is None or notification.user_id != user_id:
                raise NotFoundError(f"Notification '{notification_id}' not found")
            notification.read = True
        return notification

    def unread_count(self, user_id: str) -> int:
        return len(self.list(user_id, unread_only=True))
