from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from notifier.core.config import settings
from notifier.core.redis_utils import get_ssl_options, prepare_redis_url


def _beat_schedule() -> dict:
    return {
        "process-due-reminders": {
            "task": "reminders.process_due",
            "schedule": crontab(minute=0),  # hourly
        },
        "process-generic-retries": {
            "task": "reminders.process_generic_retries",
            "schedule": crontab(minute="*/5"),
        },
        "send-payment-reminders": {
            "task": "reminders.send_payment_reminders",
            # 10:00 Africa/Nairobi by default
            "schedule": crontab(minute=0, hour=settings.PAYMENT_REMINDER_HOUR_UTC),
        },
        "sweep-notification-log": {
            "task": "maintenance.sweep_notification_log",
            "schedule": crontab(minute=30, hour=3),
        },
    }


def _create_celery() -> Celery:
    redis_url = prepare_redis_url(settings.REDIS_URL)
    ssl_options = get_ssl_options()
    celery = Celery(
        "reminder_engine",
        broker=redis_url,
        backend=redis_url,
        include=["notifier.workers.tasks"],
    )
    celery.conf.update(
        task_default_queue="reminders",
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_always_eager=settings.ENV.lower() in {"test"},
        worker_prefetch_multiplier=1,
    )
    if ssl_options:
        celery.conf.update(
            broker_use_ssl=ssl_options,
            redis_backend_use_ssl=ssl_options,
        )
    # Beat schedule (only active outside test env)
    if settings.ENV.lower() not in {"test"}:
        celery.conf.beat_schedule = _beat_schedule()
    return celery


celery_app = _create_celery()
