from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from notifier.models.models import NotificationLog
from notifier.services.retention import sweep_notification_log


def _entry(db, timestamp, order_id):
    db.add(
        NotificationLog(
            type="collection_reminder",
            channel="whatsapp",
            order_id=order_id,
            status="sent",
            timestamp=timestamp,
        )
    )
    db.commit()


def test_sweep_removes_only_entries_past_retention(db_session, now):
    _entry(db_session, now - timedelta(days=45), "ORD-OLD")
    _entry(db_session, now - timedelta(days=30, minutes=1), "ORD-EXPIRED")
    _entry(db_session, now - timedelta(days=29), "ORD-RECENT")
    _entry(db_session, now, "ORD-TODAY")

    removed = sweep_notification_log(db_session, now=now)

    assert removed == 2
    remaining = sorted(db_session.scalars(select(NotificationLog.order_id)).all())
    assert remaining == ["ORD-RECENT", "ORD-TODAY"]


def test_sweep_with_custom_window(db_session, now):
    _entry(db_session, now - timedelta(days=8), "ORD-A")
    _entry(db_session, now - timedelta(days=2), "ORD-B")

    assert sweep_notification_log(db_session, now=now, retention_days=7) == 1
    assert sweep_notification_log(db_session, now=now, retention_days=7) == 0
