"""Retry policy shared by collection reminders and generic notifications.

Both families follow one state machine::

    pending -> processing -> sent
                          -> cancelled
                          -> retry scheduled -> pending (or pending_retry)
                          -> failed (or permanently_failed) once retries run out

Only the delay between attempts differs, and that lives in ``delay()``.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta

from notifier.core.config import settings


class RetryKind(str, enum.Enum):
    REMINDER = "reminder"  # fixed reschedule, picked up by the hourly batch
    GENERIC = "generic"  # exponential backoff, picked up by the retry poller


@dataclass(frozen=True)
class RetryDecision:
    exhausted: bool
    retry_count: int
    next_attempt_at: datetime | None = None


def delay(kind: RetryKind, attempt: int) -> timedelta:
    """Delay before retry number ``attempt`` (0-based)."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    kind = RetryKind(kind)
    if kind is RetryKind.REMINDER:
        return timedelta(hours=settings.REMINDER_RETRY_DELAY_HOURS)
    return timedelta(seconds=settings.GENERIC_RETRY_BASE_SECONDS * (2 ** attempt))


def decide_after_failure(
    kind: RetryKind,
    retry_count: int,
    now: datetime,
    max_retries: int | None = None,
) -> RetryDecision:
    """Next state after a failed attempt.

    ``retry_count`` is the number of retries already consumed. At the cap the
    record becomes terminal and the count is left alone.
    """
    cap = settings.REMINDER_MAX_RETRIES if max_retries is None else max_retries
    current = retry_count or 0
    if current >= cap:
        return RetryDecision(exhausted=True, retry_count=current)
    return RetryDecision(
        exhausted=False,
        retry_count=current + 1,
        next_attempt_at=now + delay(kind, current),
    )
