"""Notification Center.

Entry point the billing services use to reach customers. ``notify``
is fire-and-forget: channel failures are logged and never raised.
``notify_once`` claims the daily idempotency key in the notification
store first, so with a database-backed store the once-per-day rule
holds across workers and restarts.

Services that mutate money open a ``NotificationQueue`` while their
transaction is in flight and flush it only after commit, so an
aborted transaction sends nothing.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Optional, Union
from zoneinfo import ZoneInfo

from src.notifications.channels import (
    ChannelRegistry,
    Notification,
    NotificationCategory,
    NotificationChannel,
)
from src.notifications.delivery import (
    DeliveryRecord,
    DeliveryStatus,
    DeliveryTracker,
    idempotency_key,
)
from src.notifications.store import (
    DEFAULT_HISTORY_LIMIT,
    InMemoryNotificationStore,
    NotificationStore,
)

logger = logging.getLogger(__name__)

CategoryLike = Union[NotificationCategory, str]


class NotificationCenter:
    """Stores, deduplicates and fans out customer notifications.

    ``outbox`` and the delivery history keep only the last
    ``history_limit`` entries; the store is the durable record.

    Example:
        center = NotificationCenter(store=SqlNotificationStore(factory), timezone="Asia/Jakarta")
        await center.notify("cust-1", "Tagihan Air Baru", "...", category="Informasi")
        sent = await center.notify_once("cust-1", "Peringatan Saldo", "...", category="Peringatan")
    """

    def __init__(
        self,
        channels: Optional[List[NotificationChannel]] = None,
        timezone: str = "Asia/Jakarta",
        store: Optional[NotificationStore] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.registry = ChannelRegistry(channels)
        self.store = store if store is not None else InMemoryNotificationStore(history_limit)
        self.tracker = DeliveryTracker(history_limit)
        self._tz = ZoneInfo(timezone)
        self._outbox: Deque[Notification] = deque(maxlen=history_limit)

    @property
    def outbox(self) -> List[Notification]:
        return list(self._outbox)

    def sent_to(self, recipient_id: str, title: Optional[str] = None) -> List[Notification]:
        items = [n for n in self._outbox if n.recipient_id == recipient_id]
        if title is not None:
            items = [n for n in items if n.title == title]
        return items

    async def notify(
        self,
        recipient_id: str,
        title: str,
        body: str,
        category: CategoryLike = NotificationCategory.INFORMATION,
        link: str = "",
        now: Optional[datetime] = None,
    ) -> Notification:
        notification = self._build(recipient_id, title, body, category, link, now)
        await self.store.add(notification)
        await self._deliver(notification)
        return notification

    async def notify_once(
        self,
        recipient_id: str,
        title: str,
        body: str,
        category: CategoryLike = NotificationCategory.WARNING,
        link: str = "",
        now: Optional[datetime] = None,
    ) -> bool:
        """Send unless the recipient already got this title/category today."""
        notification = self._build(recipient_id, title, body, category, link, now)
        key = idempotency_key(
            recipient_id, title, notification.category, notification.created_at, self._tz,
        )
        if not await self.store.add(notification, dedupe_day=key[3]):
            logger.debug(
                "Skipping duplicate notification %r for %s on %s",
                title, recipient_id, key[3],
            )
            self.tracker.record(DeliveryRecord(
                recipient_id=recipient_id, title=title, status=DeliveryStatus.DUPLICATE,
            ))
            return False
        await self._deliver(notification)
        return True

    async def already_sent_today(
        self,
        recipient_id: str,
        title: str,
        category: CategoryLike,
        now: Optional[datetime] = None,
    ) -> bool:
        key = idempotency_key(
            recipient_id, title, NotificationCategory.coerce(category),
            now or datetime.now(timezone.utc), self._tz,
        )
        return await self.store.claimed(key)

    def queue(self) -> "NotificationQueue":
        return NotificationQueue(self)

    def _build(self, recipient_id, title, body, category, link, now) -> Notification:
        return Notification(
            recipient_id=recipient_id,
            title=title,
            body=body,
            category=NotificationCategory.coerce(category),
            link=link,
            created_at=now or datetime.now(timezone.utc),
        )

    async def _deliver(self, notification: Notification) -> None:
        self._outbox.append(notification)
        results = await self.registry.send_to_all(notification)
        ok = sum(1 for r in results if r.success)
        failed = len(results) - ok
        self.tracker.record(DeliveryRecord(
            notification_id=notification.notification_id,
            recipient_id=notification.recipient_id,
            title=notification.title,
            status=DeliveryStatus.SENT if ok or not results else DeliveryStatus.FAILED,
            channels_ok=ok,
            channels_failed=failed,
        ))


@dataclass
class _Pending:
    recipient_id: str
    title: str
    body: str
    category: CategoryLike
    link: str
    once: bool
    now: Optional[datetime]


class NotificationQueue:
    """Notifications held back until the caller's transaction commits."""

    def __init__(self, center: Optional[NotificationCenter]):
        self._center = center
        self._pending: List[_Pending] = []

    def __len__(self) -> int:
        return len(self._pending)

    def notify(self, recipient_id, title, body, category=NotificationCategory.INFORMATION,
               link="", now=None) -> None:
        self._pending.append(_Pending(recipient_id, title, body, category, link, False, now))

    def notify_once(self, recipient_id, title, body, category=NotificationCategory.WARNING,
                    link="", now=None) -> None:
        self._pending.append(_Pending(recipient_id, title, body, category, link, True, now))

    def discard(self) -> None:
        self._pending.clear()

    async def flush(self) -> int:
        """Dispatch everything queued; returns how many were actually sent."""
        pending, self._pending = self._pending, []
        if self._center is None:
            return 0
        sent = 0
        for item in pending:
            if item.once:
                if await self._center.notify_once(
                    item.recipient_id, item.title, item.body, item.category, item.link, item.now,
                ):
                    sent += 1
            else:
                await self._center.notify(
                    item.recipient_id, item.title, item.body, item.category, item.link, item.now,
                )
                sent += 1
        return sent
