"""Payload rendering for collection reminders.

WhatsApp reminders use pre-approved templates (one per milestone); email
reminders are rendered from Jinja2 HTML templates in ``templates/email``.
"""
from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from notifier.core.config import settings
from notifier.models.models import Order, ReminderRecord, ReminderType

_template_dir = Path(__file__).resolve().parents[2] / "templates" / "email"
jinja_env = Environment(
    loader=FileSystemLoader(str(_template_dir)),
    autoescape=select_autoescape(["html", "xml"]),
)

# Template names must match the ones approved with the WhatsApp provider
REMINDER_TEMPLATES: dict[str, str] = {
    ReminderType.SEVEN_DAYS.value: "uncollected_reminder_7day",
    ReminderType.FOURTEEN_DAYS.value: "uncollected_reminder_14day",
    ReminderType.THIRTY_DAYS.value: "uncollected_reminder_30day",
    ReminderType.MONTHLY.value: "uncollected_reminder_monthly",
    ReminderType.DISPOSAL_ELIGIBLE.value: "uncollected_reminder_disposal",
}

_URGENCY = {
    ReminderType.DISPOSAL_ELIGIBLE.value: (
        "urgent",
        "#dc2626",
        "URGENT: Your items are eligible for disposal",
    ),
    ReminderType.THIRTY_DAYS.value: (
        "high",
        "#f59e0b",
        "Final Notice: Please collect your items",
    ),
}
_DEFAULT_URGENCY = ("normal", "#3b82f6", "Reminder: Your items are ready for collection")

_SUBJECTS = {
    ReminderType.DISPOSAL_ELIGIBLE.value: "URGENT: Order {order_id} is eligible for disposal",
    ReminderType.THIRTY_DAYS.value: "Final Notice: Please collect order {order_id}",
}
_DEFAULT_SUBJECT = "Reminder: Order {order_id} is ready for collection"


def template_for(reminder_type: str) -> str:
    """Fixed lookup from milestone to WhatsApp template name."""
    try:
        return REMINDER_TEMPLATES[reminder_type]
    except KeyError:
        raise ValueError(f"Unknown reminder type: {reminder_type!r}") from None


def calculate_days_uncollected(order: Order, now: datetime) -> int:
    """Whole days since the order was ready; 0 when no completion time is known."""
    ready = order.best_completion_time
    if ready is None:
        return 0
    days = math.floor((now - ready).total_seconds() / 86400)
    return max(0, days)


def build_template_params(reminder: ReminderRecord, days_uncollected: int) -> list[dict[str, str]]:
    return [
        {"name": "customer_name", "value": reminder.customer_name or "Valued Customer"},
        {"name": "order_id", "value": reminder.order_id},
        {"name": "days_uncollected", "value": str(days_uncollected)},
    ]


def reminder_subject(reminder: ReminderRecord) -> str:
    return _SUBJECTS.get(reminder.reminder_type, _DEFAULT_SUBJECT).format(order_id=reminder.order_id)


def render_reminder_email(reminder: ReminderRecord, days_uncollected: int) -> str:
    urgency, color, banner = _URGENCY.get(reminder.reminder_type, _DEFAULT_URGENCY)
    template = jinja_env.get_template("collection_reminder.html")
    return template.render(
        business_name=settings.BUSINESS_NAME,
        customer_name=reminder.customer_name or "Valued Customer",
        order_id=reminder.order_id,
        days_uncollected=days_uncollected,
        urgency=urgency,
        urgency_color=color,
        urgency_text=banner,
        reminder_type=reminder.reminder_type,
        message_content=reminder.message_content,
        order_url=f"{settings.PORTAL_URL.rstrip('/')}/portal/orders/{reminder.order_id}",
    )
