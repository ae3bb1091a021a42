"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can
change without touching the delivery logic.
"""

from __future__ import annotations

from prometheus_client import Counter

_REMINDERS_PROCESSED = Counter(
    "reminders_processed_total", "Collection reminders processed by outcome", ["outcome"]
)
_CHANNEL_DELIVERIES = Counter(
    "channel_deliveries_total", "Channel send attempts", ["channel", "result"]
)
_CLAIM_CONFLICTS = Counter(
    "claim_conflicts_total", "Records skipped because another worker claimed them", ["kind"]
)
_GENERIC_RETRIES_SCHEDULED = Counter(
    "generic_retries_scheduled_total", "Generic notification retries scheduled"
)
_GENERIC_PERMANENT_FAILURES = Counter(
    "generic_permanent_failures_total", "Generic notifications that exhausted retries"
)
_PAYMENT_REMINDERS = Counter(
    "payment_reminders_total", "Daily payment reminder decisions", ["outcome"]
)
_LOG_ENTRIES_SWEPT = Counter(
    "notification_log_swept_total", "Notification log entries removed by retention"
)


def reminder_processed(outcome: str) -> None:
    _REMINDERS_PROCESSED.labels(outcome=outcome).inc()


def channel_delivery(channel: str, success: bool) -> None:
    _CHANNEL_DELIVERIES.labels(channel=channel, result="success" if success else "failure").inc()


def claim_conflict(kind: str) -> None:
    _CLAIM_CONFLICTS.labels(kind=kind).inc()


def generic_retry_scheduled() -> None:
    _GENERIC_RETRIES_SCHEDULED.inc()


def generic_permanently_failed() -> None:
    _GENERIC_PERMANENT_FAILURES.inc()


def payment_reminder(outcome: str) -> None:
    _PAYMENT_REMINDERS.labels(outcome=outcome).inc()


def log_entries_swept(count: int) -> None:
    if count:
        _LOG_ENTRIES_SWEPT.inc(count)
