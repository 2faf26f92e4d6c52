"""Notification Persistence.

Where delivered notifications and the daily idempotency index live.
A notification sent once per day carries its local calendar date; the
store refuses a second one with the same recipient, title, category and
date, so the dedupe holds across processes and restarts when backed by
the database.
"""

import logging
from collections import deque
from datetime import date, datetime, time, timezone
from typing import Deque, List, Optional, Protocol, Set, runtime_checkable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.db.models import NotificationRecord
from src.ledger.sql_store import is_unique_violation
from src.notifications.channels import Notification, NotificationCategory
from src.notifications.delivery import IdempotencyKey

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


@runtime_checkable
class NotificationStore(Protocol):
    """Persistence contract for the notification center."""

    async def add(self, notification: Notification, dedupe_day: Optional[date] = None) -> bool:
        """Store a notification; False if ``dedupe_day`` was already claimed."""
        ...

    async def claimed(self, key: IdempotencyKey) -> bool: ...

    async def list_for(
        self, recipient_id: str, limit: int = 50, unread_only: bool = False,
    ) -> List[Notification]: ...

    async def mark_read(self, recipient_id: str, notification_id: Optional[str] = None) -> int: ...

    async def prune_before(self, day: date) -> int: ...


def _key(notification: Notification, day: date) -> IdempotencyKey:
    return (notification.recipient_id, notification.title, notification.category.value, day)


class InMemoryNotificationStore:
    """Bounded process-local store.

    Keeps at most ``limit`` notifications. Dedupe keys older than the
    newest day seen are dropped as soon as a later day is claimed.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        self._items: Deque[Notification] = deque(maxlen=limit)
        self._claimed: Set[IdempotencyKey] = set()
        self._latest_day: Optional[date] = None

    def __len__(self) -> int:
        return len(self._items)

    async def add(self, notification: Notification, dedupe_day: Optional[date] = None) -> bool:
        if dedupe_day is not None:
            key = _key(notification, dedupe_day)
            if key in self._claimed:
                return False
            if self._latest_day is None or dedupe_day > self._latest_day:
                self._latest_day = dedupe_day
                await self.prune_before(dedupe_day)
            self._claimed.add(key)
        self._items.append(notification)
        return True

    async def claimed(self, key: IdempotencyKey) -> bool:
        return key in self._claimed

    async def list_for(self, recipient_id, limit=50, unread_only=False) -> List[Notification]:
        items = [
            n for n in reversed(self._items)
            if n.recipient_id == recipient_id and not (unread_only and n.read)
        ]
        return items[:limit]

    async def mark_read(self, recipient_id, notification_id=None) -> int:
        count = 0
        for n in self._items:
            if n.recipient_id != recipient_id or n.read:
                continue
            if notification_id is None or n.notification_id == notification_id:
                n.read = True
                count += 1
        return count

    async def prune_before(self, day: date) -> int:
        stale = {k for k in self._claimed if k[3] < day}
        self._claimed -= stale
        return len(stale)


class SqlNotificationStore:
    """Notifications in the ``notifications`` table.

    The daily dedupe is the ``uq_notification_daily`` constraint, so two
    workers racing to send the same warning insert exactly one row.

    Example:
        store = SqlNotificationStore(get_async_session_factory())
        center = NotificationCenter(store=store)
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add(self, notification: Notification, dedupe_day: Optional[date] = None) -> bool:
        row = NotificationRecord(
            notification_id=notification.notification_id,
            recipient_id=notification.recipient_id,
            title=notification.title,
            body=notification.body,
            category=notification.category.value,
            link=notification.link,
            read=notification.read,
            dedupe_date=dedupe_day,
            created_at=notification.created_at.astimezone(timezone.utc),
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            logger.debug("Notification already sent on %s: %s", dedupe_day, e.orig)
            return False
        return True

    async def claimed(self, key: IdempotencyKey) -> bool:
        recipient_id, title, category, day = key
        r = NotificationRecord
        stmt = select(r.notification_id).where(
            r.recipient_id == recipient_id,
            r.title == title,
            r.category == category,
            r.dedupe_date == day,
        ).limit(1)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).first() is not None

    async def list_for(self, recipient_id, limit=50, unread_only=False) -> List[Notification]:
        r = NotificationRecord
        stmt = select(r).where(r.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(r.read.is_(False))
        stmt = stmt.order_by(r.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_from_row(row) for row in rows]

    async def mark_read(self, recipient_id, notification_id=None) -> int:
        r = NotificationRecord
        stmt = update(r).where(r.recipient_id == recipient_id, r.read.is_(False))
        if notification_id is not None:
            stmt = stmt.where(r.notification_id == notification_id)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt.values(read=True))
        return result.rowcount

    async def prune_before(self, day: date) -> int:
        """Delete read notifications created before ``day`` (UTC midnight)."""
        cutoff = datetime.combine(day, time.min, tzinfo=timezone.utc)
        r = NotificationRecord
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(r).where(r.created_at < cutoff, r.read.is_(True))
                )
        return result.rowcount


def _from_row(row: NotificationRecord) -> Notification:
    created_at = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Notification(
        recipient_id=row.recipient_id,
        title=row.title,
        body=row.body,
        category=NotificationCategory.coerce(row.category),
        link=row.link,
        read=row.read,
        notification_id=row.notification_id,
        created_at=created_at,
    )
