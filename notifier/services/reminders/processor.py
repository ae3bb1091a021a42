"""Hourly delivery of due collection reminders.

Each run picks up to ``REMINDER_BATCH_SIZE`` reminders that are due (or whose
claim lease expired), claims them one at a time, re-checks eligibility
against the live order and attempts WhatsApp and email independently. A
failure on one item never stops the batch.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from notifier import metrics
from notifier.core.config import settings
from notifier.core.exceptions import ClaimConflict, EligibilityFailure, RetryExhausted
from notifier.db.base_class import utcnow
from notifier.models.models import (
    Customer,
    NotificationLog,
    NotificationType,
    Order,
    ReminderRecord,
    ReminderStatus,
)
from notifier.services.claims import claim_lease, claim_reminder, commit_or_conflict
from notifier.services.notification.service import DeliveryOutcome, NotificationService
from notifier.services.reminders.eligibility import DEFAULT_PREDICATES, Predicate, ensure_eligible
from notifier.services.reminders.messages import (
    build_template_params,
    calculate_days_uncollected,
    reminder_subject,
    render_reminder_email,
    template_for,
)
from notifier.services.retry_policy import RetryKind, decide_after_failure

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
RESCHEDULED = "rescheduled"
CANCELLED = "cancelled"
SKIPPED = "skipped"


@dataclass
class ReminderBatchResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    rescheduled: int = 0
    cancelled: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None

    def record(self, reminder_id: str, outcome: str, **extra: Any) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)
        self.results.append({"reminder_id": reminder_id, "outcome": outcome, **extra})
        metrics.reminder_processed(outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "rescheduled": self.rescheduled,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "results": list(self.results),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class ReminderProcessor:
    """Processes one batch of due reminders against a single session."""

    def __init__(
        self,
        db: Session,
        notifier: NotificationService | None = None,
        predicates: Sequence[Predicate] = DEFAULT_PREDICATES,
        now: datetime | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier or NotificationService()
        self.predicates = tuple(predicates)
        self.now = now or utcnow()
        self.batch_size = batch_size or settings.REMINDER_BATCH_SIZE
        self.delay_seconds = settings.REMINDER_PROCESSING_DELAY_MS / 1000

    def due_reminders(self) -> list[ReminderRecord]:
        lease_cutoff = self.now - claim_lease()
        stmt = (
            select(ReminderRecord)
            .where(
                or_(
                    and_(
                        ReminderRecord.status == ReminderStatus.PENDING.value,
                        ReminderRecord.scheduled_date <= self.now,
                    ),
                    and_(
                        ReminderRecord.status == ReminderStatus.PROCESSING.value,
                        or_(
                            ReminderRecord.claimed_at.is_(None),
                            ReminderRecord.claimed_at <= lease_cutoff,
                        ),
                    ),
                )
            )
            .order_by(ReminderRecord.scheduled_date.asc(), ReminderRecord.id.asc())
            .limit(self.batch_size)
        )
        return list(self.db.scalars(stmt))

    async def run(self) -> ReminderBatchResult:
        result = ReminderBatchResult(start_time=utcnow())
        reminders = self.due_reminders()
        logger.info("Processing %d due reminders", len(reminders))

        for index, reminder in enumerate(reminders):
            if index and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            await self.process_one(reminder, result)

        result.end_time = utcnow()
        logger.info(
            "Reminder batch complete - sent: %d, rescheduled: %d, failed: %d, cancelled: %d, skipped: %d",
            result.sent,
            result.rescheduled,
            result.failed,
            result.cancelled,
            result.skipped,
        )
        return result

    async def process_one(self, reminder: ReminderRecord, result: ReminderBatchResult) -> str:
        reminder_id = reminder.reminder_id
        try:
            claim_reminder(self.db, reminder, self.now)
        except ClaimConflict:
            logger.info("Reminder %s claimed elsewhere, skipping", reminder_id)
            result.record(reminder_id, SKIPPED)
            return SKIPPED

        result.processed += 1
        try:
            outcome = await self._deliver(reminder)
        except ClaimConflict:
            result.record(reminder_id, SKIPPED)
            return SKIPPED
        except Exception as exc:
            logger.exception("Error processing reminder %s", reminder_id)
            result.errors.append({"reminder_id": reminder_id, "error": str(exc)})
            outcome = self._record_error(reminder, exc)

        result.record(reminder_id, outcome, retry_count=reminder.retry_count)
        return outcome

    async def _deliver(self, reminder: ReminderRecord) -> str:
        order = self.db.scalar(select(Order).where(Order.order_id == reminder.order_id))
        try:
            ensure_eligible(reminder, order, self.predicates)
        except EligibilityFailure as exc:
            reminder.status = ReminderStatus.CANCELLED.value
            reminder.cancel_reason = exc.details["reason"]
            reminder.error_message = exc.message
            reminder.claimed_at = None
            commit_or_conflict(self.db, reminder.reminder_id, ReminderStatus.PROCESSING.value, "reminder")
            logger.info("Reminder %s cancelled: %s", reminder.reminder_id, exc.message)
            return CANCELLED

        customer = self.db.scalar(select(Customer).where(Customer.customer_id == reminder.customer_id))
        days = calculate_days_uncollected(order, self.now)
        phone = reminder.customer_phone or (customer.phone if customer else None)
        email = customer.email if customer else None

        delivery = await self.notifier.send_both(
            phone=phone,
            template_name=template_for(reminder.reminder_type),
            parameters=build_template_params(reminder, days),
            email=email,
            subject=reminder_subject(reminder),
            html=render_reminder_email(reminder, days),
        )

        # The attempt happened; keep the log even if finalising loses a race
        self.db.add(self._log_entry(reminder, phone, email, delivery))
        self.db.commit()

        if delivery.any_success:
            reminder.status = ReminderStatus.SENT.value
            reminder.channel = delivery.succeeded_channel
            reminder.sent_date = self.now
            reminder.error_message = None
            reminder.claimed_at = None
            outcome = SENT
        else:
            outcome = self._apply_failure(reminder, delivery.error_summary)
        commit_or_conflict(self.db, reminder.reminder_id, ReminderStatus.PROCESSING.value, "reminder")
        return outcome

    def _apply_failure(self, reminder: ReminderRecord, error: str | None) -> str:
        decision = decide_after_failure(RetryKind.REMINDER, reminder.retry_count, self.now)
        reminder.error_message = error
        reminder.claimed_at = None
        if decision.exhausted:
            reminder.status = ReminderStatus.FAILED.value
            reminder.error_message = RetryExhausted(reminder.reminder_id, decision.retry_count, error).message
            logger.warning("Reminder %s failed permanently: %s", reminder.reminder_id, reminder.error_message)
            return FAILED
        reminder.status = ReminderStatus.PENDING.value
        reminder.retry_count = decision.retry_count
        reminder.scheduled_date = decision.next_attempt_at
        logger.info(
            "Reminder %s rescheduled for %s (retry %d)",
            reminder.reminder_id,
            decision.next_attempt_at.isoformat(),
            decision.retry_count,
        )
        return RESCHEDULED

    def _record_error(self, reminder: ReminderRecord, exc: Exception) -> str:
        """Count an unexpected error as a failed attempt so the item cannot loop forever."""
        self.db.rollback()
        if reminder.status != ReminderStatus.PROCESSING.value:
            return SKIPPED
        outcome = self._apply_failure(reminder, str(exc))
        try:
            commit_or_conflict(self.db, reminder.reminder_id, ReminderStatus.PROCESSING.value, "reminder")
        except ClaimConflict:
            return SKIPPED
        return outcome

    def _log_entry(
        self,
        reminder: ReminderRecord,
        phone: str | None,
        email: str | None,
        delivery: DeliveryOutcome,
    ) -> NotificationLog:
        return NotificationLog(
            type=NotificationType.COLLECTION_REMINDER.value,
            channel=",".join(delivery.attempted_channels) or "none",
            recipient_id=reminder.customer_id,
            recipient_phone=phone,
            recipient_email=email,
            order_id=reminder.order_id,
            reminder_id=reminder.reminder_id,
            whatsapp_success=None if delivery.whatsapp is None else delivery.whatsapp.success,
            email_success=None if delivery.email is None else delivery.email.success,
            status=SENT if delivery.any_success else FAILED,
            error=delivery.error_summary,
            timestamp=self.now,
        )


async def process_due_reminders(db: Session, notifier: NotificationService | None = None) -> ReminderBatchResult:
    return await ReminderProcessor(db, notifier).run()
