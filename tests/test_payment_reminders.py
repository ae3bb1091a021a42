from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from notifier.models.models import NotificationLog
from notifier.services.payment_reminders import (
    PaymentReminderJob,
    format_amount,
    last_payment_reminder,
    should_skip,
)


@pytest.fixture
def unpaid_order(make_customer, make_order):
    make_customer()
    return make_order(payment_status="partial", total_amount=Decimal("2500"), paid_amount=Decimal("1000"))


def _log_reminder(db, order_id, timestamp):
    entry = NotificationLog(
        type="payment_reminder",
        channel="whatsapp",
        order_id=order_id,
        status="sent",
        whatsapp_success=True,
        timestamp=timestamp,
    )
    db.add(entry)
    db.commit()
    return entry


@pytest.mark.asyncio
async def test_unreminded_order_gets_both_channels(db_session, channels, now, unpaid_order):
    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["sent"] == 1
    [call] = channels.whatsapp.calls
    assert call["template_name"] == "payment_reminder"
    assert call["parameters"] == [
        {"name": "name", "value": "Jane Wanjiku"},
        {"name": "orderId", "value": "ORD-001"},
        {"name": "balance", "value": "1,500"},
    ]
    [mail] = channels.email.calls
    assert mail["subject"] == "Payment Reminder - Order ORD-001"
    assert "KES 1,500" in mail["html"]

    last = last_payment_reminder(db_session, "ORD-001")
    assert last is not None
    assert last.whatsapp_success is True and last.email_success is True
    assert last.channel == "whatsapp,email"


@pytest.mark.asyncio
async def test_reminder_two_days_ago_is_deduplicated(db_session, channels, now, unpaid_order):
    _log_reminder(db_session, "ORD-001", now - timedelta(days=2))

    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["skipped"] == 1
    assert channels.whatsapp.calls == [] and channels.email.calls == []


@pytest.mark.asyncio
async def test_reminder_four_days_ago_sends_again(db_session, channels, now, unpaid_order):
    _log_reminder(db_session, "ORD-001", now - timedelta(days=4))

    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["sent"] == 1
    assert len(db_session.scalars(select(NotificationLog)).all()) == 2


@pytest.mark.asyncio
async def test_only_outstanding_orders_are_considered(db_session, channels, now, make_customer, make_order):
    make_customer()
    make_order(order_id="ORD-PAID", payment_status="paid")
    make_order(order_id="ORD-CANCELLED", status="cancelled", payment_status="pending", paid_amount=Decimal("0"))
    make_order(order_id="ORD-SETTLED", payment_status="partial", paid_amount=Decimal("1500"))
    make_order(order_id="ORD-DUE", payment_status="pending", paid_amount=Decimal("0"))

    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["checked"] == 1
    assert [c["parameters"][1]["value"] for c in channels.whatsapp.calls] == ["ORD-DUE"]


@pytest.mark.asyncio
async def test_missing_customer_is_skipped(db_session, channels, now, make_order):
    make_order(payment_status="pending", paid_amount=Decimal("0"))

    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["skipped"] == 1
    assert channels.whatsapp.calls == []
    assert db_session.scalars(select(NotificationLog)).all() == []


@pytest.mark.asyncio
async def test_channels_are_independent(db_session, channels, now, unpaid_order):
    channels.whatsapp.succeed = False

    summary = await PaymentReminderJob(db_session, channels.service, now=now).run()

    assert summary["sent"] == 1
    assert len(channels.email.calls) == 1
    last = last_payment_reminder(db_session, "ORD-001")
    assert last.whatsapp_success is False
    assert last.email_success is True


@pytest.mark.asyncio
async def test_failed_attempt_still_counts_for_dedup(db_session, channels, now, unpaid_order):
    channels.whatsapp.succeed = False
    channels.email.succeed = False

    first = await PaymentReminderJob(db_session, channels.service, now=now).run()
    second = await PaymentReminderJob(db_session, channels.service, now=now + timedelta(hours=1)).run()

    assert first["failed"] == 1
    assert second["skipped"] == 1


def test_should_skip_window_boundary(now):
    entry = NotificationLog(type="payment_reminder", channel="email", status="sent", timestamp=now - timedelta(days=3))

    assert should_skip(None, now) is False
    assert should_skip(entry, now) is False
    assert should_skip(entry, now - timedelta(seconds=1)) is True


@pytest.mark.parametrize(
    "amount, expected",
    [(Decimal("1500"), "1,500"), (Decimal("1500.00"), "1,500"), (Decimal("1234567.5"), "1,234,567.50")],
)
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected
