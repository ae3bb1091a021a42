"""Celery task wiring; tasks run eagerly in the test environment."""
from __future__ import annotations

from datetime import timedelta

from celery.schedules import crontab

from notifier.db.base_class import utcnow
from notifier.models.models import NotificationLog
from notifier.services import generic_retry, payment_reminders
from notifier.services.reminders import processor
from notifier.workers.celery_app import _beat_schedule, celery_app
from notifier.workers.tasks import (
    process_due_reminders,
    process_generic_retries,
    send_payment_reminders,
    sweep_notification_log,
)


def test_test_env_runs_eagerly_without_beat():
    assert celery_app.conf.task_always_eager is True
    assert not celery_app.conf.beat_schedule


def test_beat_schedule_covers_every_periodic_job():
    schedule = _beat_schedule()

    tasks = {entry["task"]: entry["schedule"] for entry in schedule.values()}
    assert set(tasks) == {
        "reminders.process_due",
        "reminders.process_generic_retries",
        "reminders.send_payment_reminders",
        "maintenance.sweep_notification_log",
    }
    assert tasks["reminders.process_due"] == crontab(minute=0)
    assert tasks["reminders.process_generic_retries"] == crontab(minute="*/5")
    assert tasks["reminders.send_payment_reminders"] == crontab(minute=0, hour=7)


def test_process_due_task_returns_summary(monkeypatch, channels, make_customer, make_order, make_reminder):
    make_customer()
    make_order(actual_completion=utcnow() - timedelta(days=8))
    make_reminder(scheduled_date=utcnow() - timedelta(minutes=1))
    monkeypatch.setattr(processor, "NotificationService", lambda: channels.service)

    summary = process_due_reminders.apply().get()

    assert summary["sent"] == 1
    assert len(channels.whatsapp.calls) == 1


def test_payment_task_returns_summary(monkeypatch, channels, make_customer, make_order):
    make_customer()
    make_order(payment_status="pending", paid_amount=0)
    monkeypatch.setattr(payment_reminders, "NotificationService", lambda: channels.service)

    summary = send_payment_reminders.apply().get()

    assert summary["sent"] == 1


def test_generic_retry_task_with_nothing_due(monkeypatch, channels):
    monkeypatch.setattr(generic_retry, "NotificationService", lambda: channels.service)

    summary = process_generic_retries.apply().get()

    assert summary["processed"] == 0


def test_sweep_task(db_session):
    db_session.add(
        NotificationLog(
            type="payment_reminder",
            channel="email",
            status="sent",
            timestamp=utcnow() - timedelta(days=40),
        )
    )
    db_session.commit()

    assert sweep_notification_log.apply().get() == 1
