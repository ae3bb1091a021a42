"""
Celery Tasks Module.

All tasks are registered with the Celery app.

Sub-modules:
- reminder_tasks: collection reminders, payment reminders, generic retries
- maintenance_tasks: notification log retention
"""
from __future__ import annotations

from .maintenance_tasks import sweep_notification_log
from .reminder_tasks import (
    process_due_reminders,
    process_generic_retries,
    send_payment_reminders,
)

__all__ = [
    # Reminder tasks
    "process_due_reminders",
    "process_generic_retries",
    "send_payment_reminders",
    # Maintenance tasks
    "sweep_notification_log",
]
