from __future__ import annotations

import pytest

from notifier.core.exceptions import EligibilityFailure
from notifier.models.models import Order, ReminderRecord
from notifier.services.reminders.eligibility import (
    DEFAULT_PREDICATES,
    CancellationReason,
    ensure_eligible,
    evaluate,
)


def _reminder() -> ReminderRecord:
    return ReminderRecord(reminder_id="REM-1", order_id="ORD-001", customer_id="CUST-001", reminder_type="7_days")


def _order(**fields) -> Order:
    return Order(order_id="ORD-001", customer_id="CUST-001", **{"status": "ready", **fields})


def test_ready_order_is_eligible():
    assert evaluate(_reminder(), _order()) is None
    ensure_eligible(_reminder(), _order())


@pytest.mark.parametrize(
    "order, reason",
    [
        (None, CancellationReason.ORDER_NOT_FOUND),
        (_order(status="collected"), CancellationReason.ORDER_TERMINAL),
        (_order(status="cancelled"), CancellationReason.ORDER_TERMINAL),
        (_order(return_method="delivery_required"), CancellationReason.DELIVERY_ORDER),
    ],
)
def test_first_failing_rule_wins(order, reason):
    assert evaluate(_reminder(), order) is reason


def test_terminal_status_checked_before_delivery():
    order = _order(status="disposed", return_method="delivery_required")

    assert evaluate(_reminder(), order) is CancellationReason.ORDER_TERMINAL


def test_ensure_eligible_raises_with_reason_and_detail():
    with pytest.raises(EligibilityFailure) as excinfo:
        ensure_eligible(_reminder(), _order(status="collected"))

    assert excinfo.value.reason is CancellationReason.ORDER_TERMINAL
    assert excinfo.value.message == "Order already collected"
    assert excinfo.value.to_dict()["error"]["code"] == "ELG001"


def test_rules_are_extensible():
    def on_hold(reminder, order):
        return "on_hold" if order is not None and order.status == "on_hold" else None

    predicates = (*DEFAULT_PREDICATES, on_hold)

    assert evaluate(_reminder(), _order(status="on_hold"), predicates) == "on_hold"
    assert evaluate(_reminder(), _order(status="on_hold")) is None
