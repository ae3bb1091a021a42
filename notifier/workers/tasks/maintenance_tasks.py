from __future__ import annotations

import logging

from notifier.db.session import session_scope
from notifier.services.retention import sweep_notification_log as sweep
from notifier.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="maintenance.sweep_notification_log",
    autoretry_for=(Exception,),
    retry_backoff=30,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def sweep_notification_log() -> int:
    """Drop notification log entries past the retention window."""
    with session_scope() as db:
        removed = sweep(db)
    logger.info("Notification log sweep removed %d entries", removed)
    return removed
