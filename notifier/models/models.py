from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text, event, inspect
from sqlalchemy.orm import Mapped, mapped_column

from notifier.core.exceptions import TerminalStateError
from notifier.db.base_class import Base, TimestampMixin, ensure_utc, utcnow


class ReminderType(str, enum.Enum):
    """Aging milestones of an uncollected order."""
    SEVEN_DAYS = "7_days"
    FOURTEEN_DAYS = "14_days"
    THIRTY_DAYS = "30_days"
    MONTHLY = "monthly"
    DISPOSAL_ELIGIBLE = "disposal_eligible"


class ReminderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # claimed by a worker
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


class GenericStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # claimed by the retry poller
    SENT = "sent"
    FAILED = "failed"
    PENDING_RETRY = "pending_retry"
    PERMANENTLY_FAILED = "permanently_failed"


class Channel(str, enum.Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class NotificationType(str, enum.Enum):
    COLLECTION_REMINDER = "collection_reminder"
    PAYMENT_REMINDER = "payment_reminder"


TERMINAL_STATUSES = frozenset(
    {
        ReminderStatus.SENT.value,
        ReminderStatus.CANCELLED.value,
        ReminderStatus.FAILED.value,
        GenericStatus.PERMANENTLY_FAILED.value,
    }
)

# Order statuses after which no collection reminder makes sense
TERMINAL_ORDER_STATUSES = frozenset({"collected", "disposed", "cancelled"})
DELIVERY_RETURN_METHOD = "delivery_required"


# ---------------------------------------------------------------------------
# External records (read-only to this service)
# ---------------------------------------------------------------------------

class Customer(Base):
    id: Mapped[int] = mapped_column(primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(30), default="received")
    return_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(scale=2), default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(scale=2), default=Decimal("0"))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    actual_completion: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_completed_time: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    estimated_completion: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def best_completion_time(self) -> dt.datetime | None:
        """Actual completion, else delivery completion, else the estimate."""
        value = self.actual_completion or self.delivery_completed_time or self.estimated_completion
        return ensure_utc(value)

    @property
    def outstanding_amount(self) -> Decimal:
        return Decimal(self.total_amount or 0) - Decimal(self.paid_amount or 0)


# ---------------------------------------------------------------------------
# Records owned by the reminder engine
# ---------------------------------------------------------------------------

class ReminderRecord(TimestampMixin, Base):
    """One reminder per (order, milestone), produced by the upstream aging detector."""

    __tablename__ = "reminders"
    __table_args__ = (Index("ix_reminders_status_scheduled", "status", "scheduled_date"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    reminder_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    customer_id: Mapped[str] = mapped_column(String(64))
    customer_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reminder_type: Mapped[str] = mapped_column(String(30))
    scheduled_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default=ReminderStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    sent_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    message_content: Mapped[str] = mapped_column(Text, default="")
    claimed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class NotificationLog(Base):
    """Append-only record of one delivery attempt (not one per channel)."""

    __tablename__ = "notification_log"
    __table_args__ = (Index("ix_notification_log_order_type_ts", "order_id", "type", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(40))
    channel: Mapped[str] = mapped_column(String(40))  # attempted channels, comma-joined
    recipient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reminder_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    # None means the channel was not attempted
    whatsapp_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    email_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    status: Mapped[str] = mapped_column(String(20))
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class GenericNotification(TimestampMixin, Base):
    """Channel-agnostic notification with enough payload to be re-sent verbatim."""

    __tablename__ = "generic_notifications"
    __table_args__ = (Index("ix_generic_notifications_status_next", "status", "next_retry_time"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(40))
    channel: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(30), default=GenericStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recipient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # WhatsApp payload
    template_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    template_params: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # Email payload
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    html: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# ---------------------------------------------------------------------------
# Terminal state guard
# ---------------------------------------------------------------------------

# Columns that may still change on a terminal record
_AUDIT_COLUMNS = frozenset({"updated_at", "version"})
_GENERIC_TERMINAL = frozenset({GenericStatus.SENT.value, GenericStatus.PERMANENTLY_FAILED.value})


def _changed_columns(target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in state.mapper.column_attrs
        if attr.key not in _AUDIT_COLUMNS and state.attrs[attr.key].history.has_changes()
    ]


def _previous_status(target) -> str:
    history = inspect(target).attrs.status.history
    return history.deleted[0] if history.deleted else target.status


@event.listens_for(ReminderRecord, "before_update")
def _freeze_terminal_reminder(mapper, connection, target: ReminderRecord) -> None:
    previous = _previous_status(target)
    if previous in TERMINAL_STATUSES:
        changed = _changed_columns(target)
        if changed:
            raise TerminalStateError(f"Reminder {target.reminder_id}", previous, changed)


@event.listens_for(GenericNotification, "before_update")
def _freeze_terminal_notification(mapper, connection, target: GenericNotification) -> None:
    previous = _previous_status(target)
    if previous in _GENERIC_TERMINAL:
        changed = _changed_columns(target)
        if changed:
            raise TerminalStateError(f"Notification {target.id}", previous, changed)
