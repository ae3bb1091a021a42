"""Retry scheduling for channel-agnostic notifications.

Any write that leaves a ``GenericNotification`` in ``failed`` is turned into
either a scheduled retry (``pending_retry`` with exponential backoff) or
``permanently_failed``. The hook runs from a ``before_flush`` listener on
the ``Session`` class, so every session sees it, not just ``SessionLocal``.
Due retries are picked up by ``GenericRetryProcessor`` from the periodic
poller; nothing waits in process memory.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, event, or_, select
from sqlalchemy.orm import Session

from notifier import metrics
from notifier.core.config import settings
from notifier.core.exceptions import ClaimConflict, IncompletePayloadError, RetryExhausted
from notifier.db.base_class import utcnow
from notifier.models.models import Channel, GenericNotification, GenericStatus
from notifier.services.claims import claim_lease, claim_notification, commit_or_conflict
from notifier.services.notification.channels.base import ChannelResult
from notifier.services.notification.service import NotificationService
from notifier.services.retry_policy import RetryKind, decide_after_failure

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {
    Channel.WHATSAPP.value: ("recipient_phone", "template_name", "template_params"),
    Channel.EMAIL.value: ("recipient_email", "subject", "html"),
}


def missing_payload_fields(channel: str, payload: Any) -> list[str]:
    """Fields a notification needs to be re-sent verbatim on ``channel``.

    ``payload`` is either a mapping or a ``GenericNotification``.
    """
    try:
        required = _REQUIRED_FIELDS[channel]
    except KeyError:
        raise ValueError(f"Unknown channel: {channel!r}") from None
    get = payload.get if isinstance(payload, dict) else lambda name: getattr(payload, name, None)
    missing = []
    for name in required:
        value = get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def handle_notification_write(notification: GenericNotification, now: datetime | None = None) -> bool:
    """Turn a ``failed`` notification into a scheduled retry or a terminal failure.

    Returns True when the record was changed.
    """
    if notification.status != GenericStatus.FAILED.value:
        return False
    now = now or utcnow()
    decision = decide_after_failure(RetryKind.GENERIC, notification.retry_count, now)
    notification.claimed_at = None
    if decision.exhausted:
        notification.status = GenericStatus.PERMANENTLY_FAILED.value
        notification.next_retry_time = None
        notification.error_message = RetryExhausted(
            notification.id, decision.retry_count, notification.error_message
        ).message
        metrics.generic_permanently_failed()
        logger.warning("Notification %s permanently failed: %s", notification.id, notification.error_message)
        return True
    notification.status = GenericStatus.PENDING_RETRY.value
    notification.next_retry_time = decision.next_attempt_at
    notification.retry_count = decision.retry_count
    metrics.generic_retry_scheduled()
    logger.info(
        "Notification %s scheduled for retry %d at %s",
        notification.id,
        decision.retry_count,
        decision.next_attempt_at.isoformat(),
    )
    return True


@event.listens_for(Session, "before_flush")
def _schedule_failed_notifications(session: Session, flush_context, instances) -> None:
    now = utcnow()
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, GenericNotification):
            handle_notification_write(obj, now)


def create_generic_notification(
    db: Session,
    *,
    type: str,
    channel: str,
    recipient_id: str | None = None,
    recipient_phone: str | None = None,
    recipient_email: str | None = None,
    order_id: str | None = None,
    template_name: str | None = None,
    template_params: list[dict[str, str]] | None = None,
    subject: str | None = None,
    html: str | None = None,
    status: str = GenericStatus.PENDING.value,
    error_message: str | None = None,
) -> GenericNotification:
    """Persist a notification with everything needed to redeliver it."""
    notification = GenericNotification(
        type=type,
        channel=channel,
        status=status,
        retry_count=0,
        recipient_id=recipient_id,
        recipient_phone=recipient_phone,
        recipient_email=recipient_email,
        order_id=order_id,
        template_name=template_name,
        template_params=template_params,
        subject=subject,
        html=html,
        error_message=error_message,
    )
    missing = missing_payload_fields(channel, notification)
    if missing:
        raise IncompletePayloadError(channel, missing)
    db.add(notification)
    db.flush()
    return notification


async def send_notification(notifier: NotificationService, notification: GenericNotification) -> ChannelResult:
    if notification.channel == Channel.WHATSAPP.value:
        return await notifier.send_whatsapp_template(
            notification.recipient_phone,
            notification.template_name,
            list(notification.template_params or []),
        )
    return await notifier.send_email(notification.recipient_email, notification.subject, notification.html)


async def dispatch_notification(
    db: Session,
    notifier: NotificationService | None = None,
    **payload: Any,
) -> GenericNotification:
    """Create a notification and make the first delivery attempt.

    A failed first attempt is committed as ``failed`` and the flush hook
    schedules the retry.
    """
    notifier = notifier or NotificationService()
    notification = create_generic_notification(db, **payload)
    db.commit()

    result = await send_notification(notifier, notification)
    if result.success:
        notification.status = GenericStatus.SENT.value
    else:
        notification.status = GenericStatus.FAILED.value
        notification.error_message = result.error
    db.commit()
    return notification


class GenericRetryProcessor:
    """Re-sends generic notifications whose retry time has come."""

    def __init__(
        self,
        db: Session,
        notifier: NotificationService | None = None,
        now: datetime | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier or NotificationService()
        self.now = now or utcnow()
        self.batch_size = batch_size or settings.GENERIC_RETRY_BATCH_SIZE

    def due_notifications(self) -> list[GenericNotification]:
        lease_cutoff = self.now - claim_lease()
        stmt = (
            select(GenericNotification)
            .where(
                or_(
                    and_(
                        GenericNotification.status == GenericStatus.PENDING_RETRY.value,
                        GenericNotification.next_retry_time <= self.now,
                    ),
                    and_(
                        GenericNotification.status == GenericStatus.PROCESSING.value,
                        or_(
                            GenericNotification.claimed_at.is_(None),
                            GenericNotification.claimed_at <= lease_cutoff,
                        ),
                    ),
                )
            )
            .order_by(GenericNotification.next_retry_time.asc(), GenericNotification.id.asc())
            .limit(self.batch_size)
        )
        return list(self.db.scalars(stmt))

    async def run(self) -> dict[str, int]:
        summary = {"processed": 0, "sent": 0, "rescheduled": 0, "permanently_failed": 0, "skipped": 0}
        for notification in self.due_notifications():
            outcome = await self.retry_one(notification)
            summary[outcome] += 1
            if outcome != "skipped":
                summary["processed"] += 1
        logger.info("Generic retry poll complete: %s", summary)
        return summary

    async def retry_one(self, notification: GenericNotification) -> str:
        try:
            claim_notification(self.db, notification, self.now)
        except ClaimConflict:
            return "skipped"

        missing = missing_payload_fields(notification.channel, notification)
        if missing:
            error = IncompletePayloadError(notification.channel, missing)
            logger.error("Notification %s cannot be redelivered: %s", notification.id, error.message)
            notification.status = GenericStatus.PERMANENTLY_FAILED.value
            notification.error_message = error.message
            notification.claimed_at = None
            metrics.generic_permanently_failed()
            return self._finalise(notification)

        try:
            result = await send_notification(self.notifier, notification)
        except Exception as exc:
            logger.exception("Error re-sending notification %s", notification.id)
            self.db.rollback()
            result = ChannelResult.failed(str(exc))

        if result.success:
            notification.status = GenericStatus.SENT.value
            notification.error_message = None
            notification.claimed_at = None
        else:
            notification.status = GenericStatus.FAILED.value
            notification.error_message = result.error
            handle_notification_write(notification, self.now)
        return self._finalise(notification)

    def _finalise(self, notification: GenericNotification) -> str:
        try:
            commit_or_conflict(self.db, notification.id, GenericStatus.PROCESSING.value, "generic")
        except ClaimConflict:
            return "skipped"
        if notification.status == GenericStatus.SENT.value:
            return "sent"
        if notification.status == GenericStatus.PENDING_RETRY.value:
            return "rescheduled"
        return "permanently_failed"
