from __future__ import annotations

from datetime import timedelta

import pytest

from notifier.services.retry_policy import RetryKind, decide_after_failure, delay


def test_reminder_delay_is_fixed():
    assert {delay(RetryKind.REMINDER, n) for n in range(4)} == {timedelta(hours=4)}


def test_generic_delay_is_exponential():
    delays = [delay(RetryKind.GENERIC, n) for n in range(4)]
    assert delays == [timedelta(seconds=s) for s in (60, 120, 240, 480)]
    assert all(a < b for a, b in zip(delays, delays[1:]))


def test_delay_accepts_kind_value():
    assert delay("generic", 1) == timedelta(seconds=120)


def test_negative_attempt_rejected():
    with pytest.raises(ValueError):
        delay(RetryKind.GENERIC, -1)


@pytest.mark.parametrize("retry_count", [0, 1, 2])
def test_failure_below_cap_schedules_retry(retry_count, now):
    decision = decide_after_failure(RetryKind.REMINDER, retry_count, now)

    assert decision.exhausted is False
    assert decision.retry_count == retry_count + 1
    assert decision.next_attempt_at == now + timedelta(hours=4)


def test_failure_at_cap_is_exhausted(now):
    decision = decide_after_failure(RetryKind.GENERIC, 3, now)

    assert decision.exhausted is True
    assert decision.retry_count == 3
    assert decision.next_attempt_at is None


def test_custom_cap(now):
    assert decide_after_failure(RetryKind.GENERIC, 1, now, max_retries=1).exhausted is True
    assert decide_after_failure(RetryKind.GENERIC, None, now).retry_count == 1

