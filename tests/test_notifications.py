"""Tests for customer notifications: channels, delivery tracking and the center."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from src.db.base import Base
from src.db.engine import get_async_session_factory
from src.notifications import (
    ChannelKind,
    ChannelRegistry,
    ChannelResult,
    DeliveryRecord,
    DeliveryStatus,
    DeliveryTracker,
    InAppChannel,
    InMemoryNotificationStore,
    LogChannel,
    Notification,
    NotificationCategory,
    NotificationCenter,
    NotificationQueue,
    SqlNotificationStore,
    idempotency_key,
)

JAKARTA = ZoneInfo("Asia/Jakarta")


async def _open_db(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, get_async_session_factory(engine)


class BrokenChannel:
    @property
    def kind(self):
        return ChannelKind.LOG

    async def send(self, notification):
        raise ConnectionError("log sink down")


# ── Category ─────────────────────────────────────────────────────────


class TestNotificationCategory:
    def test_values(self):
        assert NotificationCategory.TRANSACTION.value == "Transaksi"
        assert NotificationCategory.INFORMATION.value == "Informasi"
        assert NotificationCategory.WARNING.value == "Peringatan"

    def test_coerce(self):
        assert NotificationCategory.coerce("Peringatan") is NotificationCategory.WARNING
        assert NotificationCategory.coerce("WARNING") is NotificationCategory.WARNING
        assert NotificationCategory.coerce(NotificationCategory.INFORMATION) is NotificationCategory.INFORMATION

    def test_coerce_unknown(self):
        with pytest.raises(ValueError):
            NotificationCategory.coerce("Promo")


# ── Channels ─────────────────────────────────────────────────────────


class TestChannels:
    @pytest.mark.asyncio
    async def test_in_app_inbox(self):
        channel = InAppChannel()
        first = Notification("cust-1", "A", "a", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
        second = Notification("cust-1", "B", "b", created_at=datetime(2024, 5, 2, tzinfo=timezone.utc))
        await channel.send(first)
        result = await channel.send(second)
        assert result.success
        assert [n.title for n in channel.inbox("cust-1")] == ["B", "A"]
        assert channel.inbox("cust-2") == []

    @pytest.mark.asyncio
    async def test_mark_read(self):
        channel = InAppChannel()
        n = Notification("cust-1", "A", "a")
        await channel.send(n)
        await channel.send(Notification("cust-1", "B", "b"))
        assert channel.mark_read("cust-1", n.notification_id) == 1
        assert [x.title for x in channel.inbox("cust-1", unread_only=True)] == ["B"]
        assert channel.mark_read("cust-1") == 1

    @pytest.mark.asyncio
    async def test_log_channel(self, caplog):
        channel = LogChannel()
        with caplog.at_level("INFO"):
            result = await channel.send(Notification("cust-1", "Tagihan Air Baru", "body"))
        assert result.success
        assert "Tagihan Air Baru" in caplog.text

    @pytest.mark.asyncio
    async def test_registry_isolates_failures(self):
        inbox = InAppChannel()
        registry = ChannelRegistry([inbox, BrokenChannel()])
        results = await registry.send_to_all(Notification("cust-1", "A", "a"))
        assert [r.success for r in results] == [True, False]
        assert "log sink down" in results[1].error
        assert len(inbox.inbox("cust-1")) == 1

    def test_default_channels(self):
        registry = ChannelRegistry()
        assert registry.available_channels == [ChannelKind.IN_APP, ChannelKind.LOG]

    def test_result_to_dict(self):
        assert ChannelResult(success=True, message_id="m").to_dict()["channel"] == "in_app"


# ── Delivery tracking ────────────────────────────────────────────────


class TestDeliveryTracker:
    def test_key_uses_local_date(self):
        # 17:30 UTC is 00:30 the next day in Jakarta.
        when = datetime(2024, 5, 10, 17, 30, tzinfo=timezone.utc)
        key = idempotency_key("cust-1", "Peringatan Saldo", NotificationCategory.WARNING, when, JAKARTA)
        assert key == ("cust-1", "Peringatan Saldo", "Peringatan", date(2024, 5, 11))

    def test_history_is_bounded(self):
        tracker = DeliveryTracker(limit=3)
        for i in range(5):
            tracker.record(DeliveryRecord(recipient_id="cust-1", title=f"T{i}"))
        assert [r.title for r in tracker.get_history()] == ["T2", "T3", "T4"]
        assert tracker.get_stats()["total_deliveries"] == 3


# ── Stores ───────────────────────────────────────────────────────────


class TestInMemoryNotificationStore:
    @pytest.mark.asyncio
    async def test_daily_key_claimed_once(self, now):
        store = InMemoryNotificationStore()
        day = date(2024, 5, 10)
        assert await store.add(Notification("cust-1", "T", "a", NotificationCategory.WARNING), day)
        assert not await store.add(Notification("cust-1", "T", "b", NotificationCategory.WARNING), day)
        assert await store.claimed(("cust-1", "T", "Peringatan", day))
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_undeduped_always_added(self):
        store = InMemoryNotificationStore()
        assert await store.add(Notification("cust-1", "T", "a"))
        assert await store.add(Notification("cust-1", "T", "a"))
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_older_days_pruned_when_a_new_day_is_claimed(self):
        store = InMemoryNotificationStore()
        old = ("cust-1", "T", "Peringatan", date(2024, 5, 9))
        await store.add(Notification("cust-1", "T", "a", NotificationCategory.WARNING), old[3])
        await store.add(Notification("cust-1", "T", "a", NotificationCategory.WARNING), date(2024, 5, 10))
        assert not await store.claimed(old)
        assert await store.claimed(("cust-1", "T", "Peringatan", date(2024, 5, 10)))

    @pytest.mark.asyncio
    async def test_bounded(self):
        store = InMemoryNotificationStore(limit=2)
        for title in ("A", "B", "C"):
            await store.add(Notification("cust-1", title, "x"))
        assert [n.title for n in await store.list_for("cust-1")] == ["C", "B"]

    @pytest.mark.asyncio
    async def test_mark_read(self):
        store = InMemoryNotificationStore()
        first = Notification("cust-1", "A", "a")
        await store.add(first)
        await store.add(Notification("cust-1", "B", "b"))
        assert await store.mark_read("cust-1", first.notification_id) == 1
        assert [n.title for n in await store.list_for("cust-1", unread_only=True)] == ["B"]


class TestSqlNotificationStore:
    @pytest.mark.asyncio
    async def test_dedupe_survives_a_new_center(self, tmp_path, now):
        engine, factory = await _open_db(tmp_path)
        try:
            first = NotificationCenter(store=SqlNotificationStore(factory))
            second = NotificationCenter(store=SqlNotificationStore(factory))
            assert await first.notify_once("cust-1", "Peringatan Saldo", "x", now=now)
            assert not await second.notify_once("cust-1", "Peringatan Saldo", "x", now=now)
            assert await second.already_sent_today("cust-1", "Peringatan Saldo", "Peringatan", now=now)
            assert second.outbox == []
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_plain_notifications_not_deduped(self, tmp_path, now):
        engine, factory = await _open_db(tmp_path)
        try:
            store = SqlNotificationStore(factory)
            center = NotificationCenter(store=store)
            await center.notify("cust-1", "Tagihan Air Baru", "a", now=now)
            await center.notify("cust-1", "Tagihan Air Baru", "b", now=now)
            inbox = await store.list_for("cust-1")
            assert sorted(n.body for n in inbox) == ["a", "b"]
            assert inbox[0].created_at == now
            assert inbox[0].category is NotificationCategory.INFORMATION
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_mark_read_and_prune(self, tmp_path, now):
        engine, factory = await _open_db(tmp_path)
        try:
            store = SqlNotificationStore(factory)
            await store.add(Notification("cust-1", "A", "a", created_at=now))
            await store.add(Notification("cust-1", "B", "b", created_at=now))
            assert await store.mark_read("cust-1") == 2
            assert await store.list_for("cust-1", unread_only=True) == []
            assert await store.prune_before(date(2024, 5, 11)) == 2
            assert await store.list_for("cust-1") == []
        finally:
            await engine.dispose()


# ── Center ───────────────────────────────────────────────────────────


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_notify_delivers_to_inbox(self, center, now):
        n = await center.notify("cust-1", "Tagihan Air Baru", "body", "Transaksi", "/pembayaran", now=now)
        assert n.category is NotificationCategory.TRANSACTION
        inbox = center.registry.get(ChannelKind.IN_APP).inbox("cust-1")
        assert [x.notification_id for x in inbox] == [n.notification_id]
        assert center.tracker.get_stats()["sent"] == 1

    @pytest.mark.asyncio
    async def test_notify_once_per_local_day(self, center):
        morning = datetime(2024, 5, 10, 1, 0, tzinfo=timezone.utc)
        evening = datetime(2024, 5, 10, 16, 0, tzinfo=timezone.utc)
        next_day = datetime(2024, 5, 10, 17, 30, tzinfo=timezone.utc)
        assert await center.notify_once("cust-1", "Peringatan Saldo", "x", now=morning)
        assert not await center.notify_once("cust-1", "Peringatan Saldo", "x", now=evening)
        assert await center.notify_once("cust-1", "Peringatan Saldo", "x", now=next_day)
        assert len(center.sent_to("cust-1")) == 2
        assert center.tracker.get_stats()["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_notify_once_distinguishes_title_and_recipient(self, center, now):
        assert await center.notify_once("cust-1", "Peringatan Saldo", "x", now=now)
        assert await center.notify_once("cust-1", "Pipa Ditutup", "x", now=now)
        assert await center.notify_once("cust-2", "Peringatan Saldo", "x", now=now)

    @pytest.mark.asyncio
    async def test_already_sent_today(self, center, now):
        await center.notify_once("cust-1", "Pipa Ditutup", "x", "Informasi", now=now)
        assert await center.already_sent_today("cust-1", "Pipa Ditutup", "Informasi", now=now)
        assert not await center.already_sent_today("cust-1", "Pipa Ditutup", "Peringatan", now=now)

    @pytest.mark.asyncio
    async def test_channel_failure_is_recorded_not_raised(self, now):
        center = NotificationCenter(channels=[BrokenChannel()])
        await center.notify("cust-1", "A", "a", now=now)
        history = center.tracker.get_history(recipient_id="cust-1")
        assert history[-1].status is DeliveryStatus.FAILED


class TestNotificationQueue:
    @pytest.mark.asyncio
    async def test_nothing_sent_until_flush(self, center, now):
        queue = center.queue()
        queue.notify("cust-1", "A", "a", now=now)
        queue.notify_once("cust-1", "B", "b", now=now)
        queue.notify_once("cust-1", "B", "b", now=now)
        assert len(queue) == 3
        assert center.outbox == []
        assert await queue.flush() == 2
        assert len(queue) == 0
        assert [n.title for n in center.outbox] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_discard(self, center, now):
        queue = center.queue()
        queue.notify("cust-1", "A", "a", now=now)
        queue.discard()
        assert await queue.flush() == 0
        assert center.outbox == []

    @pytest.mark.asyncio
    async def test_without_center(self):
        queue = NotificationQueue(None)
        queue.notify("cust-1", "A", "a")
        assert await queue.flush() == 0
