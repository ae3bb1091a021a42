"""Daily reminders for orders with an outstanding balance.

An order is reminded at most once per ``PAYMENT_REMINDER_DEDUP_DAYS``: the
most recent ``payment_reminder`` entry in the notification log decides.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier import metrics
from notifier.core.config import settings
from notifier.db.base_class import ensure_utc, utcnow
from notifier.models.models import Customer, NotificationLog, NotificationType, Order
from notifier.services.notification.service import NotificationService
from notifier.services.reminders.messages import jinja_env

logger = logging.getLogger(__name__)

OUTSTANDING_PAYMENT_STATUSES = ("pending", "partial")


def last_payment_reminder(db: Session, order_id: str) -> NotificationLog | None:
    stmt = (
        select(NotificationLog)
        .where(
            NotificationLog.order_id == order_id,
            NotificationLog.type == NotificationType.PAYMENT_REMINDER.value,
        )
        .order_by(NotificationLog.timestamp.desc(), NotificationLog.id.desc())
        .limit(1)
    )
    return db.scalar(stmt)


def should_skip(last: NotificationLog | None, now: datetime, window: timedelta | None = None) -> bool:
    """True when the order was reminded less than ``window`` ago."""
    if last is None:
        return False
    window = window or timedelta(days=settings.PAYMENT_REMINDER_DEDUP_DAYS)
    return now - ensure_utc(last.timestamp) < window


def format_amount(amount: Decimal) -> str:
    """Thousands separators, decimals only when there are cents."""
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def render_payment_email(customer: Customer, order: Order) -> str:
    template = jinja_env.get_template("payment_reminder.html")
    return template.render(
        business_name=settings.BUSINESS_NAME,
        customer_name=customer.name,
        order_id=order.order_id,
        currency=settings.CURRENCY,
        total_amount=format_amount(order.total_amount),
        paid_amount=format_amount(order.paid_amount or 0),
        outstanding_amount=format_amount(order.outstanding_amount),
        order_url=f"{settings.PORTAL_URL.rstrip('/')}/portal/orders/{order.order_id}",
    )


class PaymentReminderJob:
    def __init__(self, db: Session, notifier: NotificationService | None = None, now: datetime | None = None):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.now = now or utcnow()

    def outstanding_orders(self) -> list[Order]:
        stmt = (
            select(Order)
            .where(
                Order.payment_status.in_(OUTSTANDING_PAYMENT_STATUSES),
                Order.status != "cancelled",
            )
            .order_by(Order.id)
        )
        return [order for order in self.db.scalars(stmt) if order.outstanding_amount > 0]

    async def run(self) -> dict[str, Any]:
        summary = {"checked": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": 0}
        orders = self.outstanding_orders()
        logger.info("Found %d orders with outstanding payments", len(orders))

        for order in orders:
            summary["checked"] += 1
            try:
                outcome = await self.remind(order)
            except Exception:
                logger.exception("Error sending payment reminder for order %s", order.order_id)
                self.db.rollback()
                outcome = "errors"
            summary[outcome] += 1
            metrics.payment_reminder(outcome)

        logger.info("Payment reminders completed: %s", summary)
        return summary

    async def remind(self, order: Order) -> str:
        last = last_payment_reminder(self.db, order.order_id)
        if should_skip(last, self.now):
            logger.info("Skipping payment reminder for order %s (last sent %s)", order.order_id, last.timestamp)
            return "skipped"

        customer = self.db.scalar(select(Customer).where(Customer.customer_id == order.customer_id))
        if customer is None:
            logger.error("Customer not found for order %s", order.order_id)
            return "skipped"

        outstanding = order.outstanding_amount
        delivery = await self.notifier.send_both(
            phone=customer.phone,
            template_name=settings.WATI_TEMPLATE_PAYMENT_REMINDER,
            parameters=[
                {"name": "name", "value": customer.name},
                {"name": "orderId", "value": order.order_id},
                {"name": "balance", "value": format_amount(outstanding)},
            ],
            email=customer.email,
            subject=f"Payment Reminder - Order {order.order_id}",
            html=render_payment_email(customer, order),
        )
        if not delivery.attempted_channels:
            logger.warning("No contact details for customer %s, order %s", customer.customer_id, order.order_id)
            return "skipped"

        self.db.add(
            NotificationLog(
                type=NotificationType.PAYMENT_REMINDER.value,
                channel=",".join(delivery.attempted_channels),
                recipient_id=customer.customer_id,
                recipient_phone=customer.phone,
                recipient_email=customer.email,
                order_id=order.order_id,
                whatsapp_success=None if delivery.whatsapp is None else delivery.whatsapp.success,
                email_success=None if delivery.email is None else delivery.email.success,
                status="sent" if delivery.any_success else "failed",
                error=delivery.error_summary,
                timestamp=self.now,
            )
        )
        self.db.commit()
        logger.info(
            "Sent payment reminder for order %s (Outstanding: %s %s)",
            order.order_id,
            settings.CURRENCY,
            format_amount(outstanding),
        )
        return "sent" if delivery.any_success else "failed"
