"""Claim step for records shared between overlapping worker runs.

Every write to a reminder or generic notification is a versioned UPDATE
(``version_id_col``), so a worker holding a stale copy gets ``StaleDataError``
instead of overwriting someone else's transition. A worker must move a record
to ``processing`` before making any channel call; a claim older than the
lease is considered abandoned and may be taken over.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from notifier import metrics
from notifier.core.config import settings
from notifier.core.exceptions import ClaimConflict
from notifier.db.base_class import ensure_utc
from notifier.models.models import GenericNotification, GenericStatus, ReminderRecord, ReminderStatus

logger = logging.getLogger(__name__)


def claim_lease() -> timedelta:
    return timedelta(minutes=settings.CLAIM_LEASE_MINUTES)


def _claim_expired(claimed_at: datetime | None, now: datetime) -> bool:
    claimed = ensure_utc(claimed_at)
    return claimed is None or claimed <= now - claim_lease()


def reminder_is_claimable(reminder: ReminderRecord, now: datetime) -> bool:
    if reminder.status == ReminderStatus.PENDING.value:
        return ensure_utc(reminder.scheduled_date) <= now
    if reminder.status == ReminderStatus.PROCESSING.value:
        return _claim_expired(reminder.claimed_at, now)
    return False


def notification_is_claimable(notification: GenericNotification, now: datetime) -> bool:
    if notification.status == GenericStatus.PENDING_RETRY.value:
        due = ensure_utc(notification.next_retry_time)
        return due is None or due <= now
    if notification.status == GenericStatus.PROCESSING.value:
        return _claim_expired(notification.claimed_at, now)
    return False


def commit_or_conflict(db: Session, record_id: str | int, expected_status: str, kind: str) -> None:
    """Commit pending versioned writes, translating a lost race into ``ClaimConflict``."""
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        metrics.claim_conflict(kind)
        logger.warning("Lost race on %s %s (expected %s)", kind, record_id, expected_status)
        raise ClaimConflict(record_id, expected_status) from exc


def claim_reminder(db: Session, reminder: ReminderRecord, now: datetime) -> None:
    if not reminder_is_claimable(reminder, now):
        metrics.claim_conflict("reminder")
        raise ClaimConflict(reminder.reminder_id, "claimable")
    expected = reminder.status
    reminder.status = ReminderStatus.PROCESSING.value
    reminder.claimed_at = now
    commit_or_conflict(db, reminder.reminder_id, expected, "reminder")


def claim_notification(db: Session, notification: GenericNotification, now: datetime) -> None:
    if not notification_is_claimable(notification, now):
        metrics.claim_conflict("generic")
        raise ClaimConflict(notification.id, "claimable")
    expected = notification.status
    notification.status = GenericStatus.PROCESSING.value
    notification.claimed_at = now
    commit_or_conflict(db, notification.id, expected, "generic")
