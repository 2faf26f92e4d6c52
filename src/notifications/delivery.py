"""Delivery Tracking.

Records delivery attempts and builds the daily idempotency key used to
send a warning or status notification at most once per recipient per
calendar day.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Deque, Optional, Tuple
from zoneinfo import ZoneInfo

from src.notifications.channels import NotificationCategory

logger = logging.getLogger(__name__)

IdempotencyKey = Tuple[str, str, str, date]


class DeliveryStatus(Enum):
    """Delivery attempt status."""
    SENT = "sent"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class DeliveryRecord:
    """Record of a notification delivery attempt."""
    notification_id: str = ""
    recipient_id: str = ""
    title: str = ""
    status: DeliveryStatus = DeliveryStatus.SENT
    channels_ok: int = 0
    channels_failed: int = 0
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "recipient_id": self.recipient_id,
            "title": self.title,
            "status": self.status.value,
            "channels_ok": self.channels_ok,
            "channels_failed": self.channels_failed,
        }


def idempotency_key(
    recipient_id: str,
    title: str,
    category: NotificationCategory,
    when: datetime,
    tz: ZoneInfo,
) -> IdempotencyKey:
    """(recipient, title, category, local calendar date) for daily dedupe."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return (recipient_id, title, category.value, when.astimezone(tz).date())


class DeliveryTracker:
    """Bounded history of delivery attempts.

    Example:
        tracker = DeliveryTracker(limit=500)
        tracker.record(DeliveryRecord(recipient_id="cust-1", title="Pipa Ditutup"))
        tracker.get_stats()["sent"]
    """

    def __init__(self, limit: int = 1000):
        self._history: Deque[DeliveryRecord] = deque(maxlen=limit)

    def record(self, record: DeliveryRecord) -> None:
        self._history.append(record)

    def get_history(self, limit: int = 50, recipient_id: Optional[str] = None) -> list[DeliveryRecord]:
        history = list(self._history)
        if recipient_id is not None:
            history = [r for r in history if r.recipient_id == recipient_id]
        return history[-limit:]

    def get_stats(self) -> dict:
        """Get delivery statistics."""
        total = len(self._history)
        sent = sum(1 for r in self._history if r.status == DeliveryStatus.SENT)
        failed = sum(1 for r in self._history if r.status == DeliveryStatus.FAILED)
        duplicates = sum(1 for r in self._history if r.status == DeliveryStatus.DUPLICATE)
        return {
            "total_deliveries": total,
            "sent": sent,
            "failed": failed,
            "duplicates": duplicates,
            "success_rate": sent / total if total > 0 else 0.0,
        }
