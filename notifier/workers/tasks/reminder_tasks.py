"""
Reminder Tasks.

Periodic entrypoints for the delivery processor, the daily payment reminder
job and the generic retry poller. Each run opens its own session.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Task

from notifier.db.session import session_scope
from notifier.services import generic_retry
from notifier.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="reminders.process_due",
    autoretry_for=(Exception,),
    retry_backoff=60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def process_due_reminders(self: Task) -> dict[str, Any]:
    """Deliver every reminder that is due (hourly)."""
    from notifier.services.reminders.processor import ReminderProcessor

    with session_scope() as db:
        result = asyncio.run(ReminderProcessor(db).run())
    return result.to_dict()


@celery_app.task(
    bind=True,
    name="reminders.send_payment_reminders",
    autoretry_for=(Exception,),
    retry_backoff=60,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def send_payment_reminders(self: Task) -> dict[str, Any]:
    """Remind customers about outstanding balances (daily)."""
    from notifier.services.payment_reminders import PaymentReminderJob

    with session_scope() as db:
        return asyncio.run(PaymentReminderJob(db).run())


@celery_app.task(
    bind=True,
    name="reminders.process_generic_retries",
    autoretry_for=(Exception,),
    retry_backoff=30,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def process_generic_retries(self: Task) -> dict[str, int]:
    """Re-send generic notifications whose backoff has elapsed."""
    with session_scope() as db:
        return asyncio.run(generic_retry.GenericRetryProcessor(db).run())
