"""Notification Channels.

Customer notifications and the channels that deliver them. The in-app
channel keeps a per-recipient inbox; the log channel writes each
notification to the application log.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


class NotificationCategory(Enum):
    """Category shown to the customer next to a notification."""
    TRANSACTION = "Transaksi"
    INFORMATION = "Informasi"
    WARNING = "Peringatan"

    @classmethod
    def coerce(cls, value: Union["NotificationCategory", str]) -> "NotificationCategory":
        if isinstance(value, cls):
            return value
        for member in cls:
            if value in (member.value, member.name):
                return member
        raise ValueError(f"Unknown notification category: {value}")


class ChannelKind(Enum):
    """Available notification channel types."""
    IN_APP = "in_app"
    LOG = "log"


@dataclass
class Notification:
    """A single message addressed to one recipient."""
    recipient_id: str
    title: str
    body: str
    category: NotificationCategory = NotificationCategory.INFORMATION
    link: str = ""
    read: bool = False
    notification_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "recipient_id": self.recipient_id,
            "title": self.title,
            "body": self.body,
            "category": self.category.value,
            "link": self.link,
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ChannelResult:
    """Result of a channel delivery attempt."""
    channel: ChannelKind = ChannelKind.IN_APP
    success: bool = False
    message_id: str = ""
    error: str = ""
    delivered_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
        }


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol for notification channels."""

    @property
    def kind(self) -> ChannelKind: ...

    async def send(self, notification: Notification) -> ChannelResult: ...


class InAppChannel:
    """Stores notifications in per-recipient inboxes."""

    def __init__(self):
        self._inboxes: Dict[str, List[Notification]] = defaultdict(list)

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.IN_APP

    async def send(self, notification: Notification) -> ChannelResult:
        self._inboxes[notification.recipient_id].append(notification)
        return ChannelResult(channel=self.kind, success=True,
                             message_id=notification.notification_id)

    def inbox(self, recipient_id: str, unread_only: bool = False) -> List[Notification]:
        items = list(self._inboxes.get(recipient_id, []))
        if unread_only:
            items = [n for n in items if not n.read]
        return sorted(items, key=lambda n: n.created_at, reverse=True)

    def mark_read(self, recipient_id: str, notification_id: Optional[str] = None) -> int:
        """Mark one notification (or all of them) read; returns how many changed."""
        changed = 0
        for n in self._inboxes.get(recipient_id, []):
            if n.read:
                continue
            if notification_id is None or n.notification_id == notification_id:
                n.read = True
                changed += 1
        return changed


class LogChannel:
    """Writes notifications to the application log."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    @property
    def kind(self) -> ChannelKind:
        return ChannelKind.LOG

    async def send(self, notification: Notification) -> ChannelResult:
        logger.log(
            self._level,
            f"[NOTIFY {notification.category.value}] {notification.recipient_id} "
            f"{notification.title}: {notification.body}",
        )
        return ChannelResult(channel=self.kind, success=True,
                             message_id=f"log_{notification.notification_id}")


class ChannelRegistry:
    """Registry of notification channels with fan-out dispatch."""

    def __init__(self, channels: Optional[List[NotificationChannel]] = None):
        if channels is None:
            channels = [InAppChannel(), LogChannel()]
        self._channels: Dict[ChannelKind, NotificationChannel] = {
            c.kind: c for c in channels
        }

    def register(self, channel: NotificationChannel) -> None:
        self._channels[channel.kind] = channel

    def get(self, kind: ChannelKind) -> Optional[NotificationChannel]:
        return self._channels.get(kind)

    async def send_to_all(self, notification: Notification) -> List[ChannelResult]:
        """Deliver to every channel; a failing channel never stops the others."""
        results = []
        for kind, channel in self._channels.items():
            try:
                results.append(await channel.send(notification))
            except Exception as exc:
                logger.warning(
                    "Channel %s failed for notification %s: %s",
                    kind.value, notification.notification_id, exc,
                    exc_info=True,
                )
                results.append(ChannelResult(channel=kind, success=False, error=str(exc)))
        return results

    @property
    def available_channels(self) -> List[ChannelKind]:
        return list(self._channels.keys())
