"""Customer Notifications.

In-app and log delivery of billing notifications with daily
idempotency keys for warnings, a post-commit dispatch queue, and
in-memory or database-backed notification stores.
"""

from src.notifications.channels import (
    ChannelKind,
    ChannelRegistry,
    ChannelResult,
    InAppChannel,
    LogChannel,
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
    InMemoryNotificationStore,
    NotificationStore,
    SqlNotificationStore,
)
from src.notifications.center import (
    NotificationCenter,
    NotificationQueue,
)

__all__ = [
    # Channels
    "ChannelKind",
    "ChannelRegistry",
    "ChannelResult",
    "InAppChannel",
    "LogChannel",
    "Notification",
    "NotificationCategory",
    "NotificationChannel",
    # Delivery
    "DeliveryRecord",
    "DeliveryStatus",
    "DeliveryTracker",
    "idempotency_key",
    # Store
    "InMemoryNotificationStore",
    "NotificationStore",
    "SqlNotificationStore",
    # Center
    "NotificationCenter",
    "NotificationQueue",
]
