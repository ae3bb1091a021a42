from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from notifier import metrics
from notifier.core.config import settings
from notifier.db.base_class import utcnow
from notifier.models.models import NotificationLog

logger = logging.getLogger(__name__)


def sweep_notification_log(db: Session, now: datetime | None = None, retention_days: int | None = None) -> int:
    """Delete log entries older than the retention window. Returns the number removed."""
    now = now or utcnow()
    days = settings.LOG_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = now - timedelta(days=days)
    result = db.execute(delete(NotificationLog).where(NotificationLog.timestamp < cutoff))
    db.commit()
    removed = result.rowcount or 0
    metrics.log_entries_swept(removed)
    logger.info("Removed %d notification log entries older than %s", removed, cutoff.isoformat())
    return removed
