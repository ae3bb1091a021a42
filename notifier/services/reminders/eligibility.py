"""Eligibility rules re-checked against the live order before every send.

Each rule is a named function ``(reminder, order) -> CancellationReason | None``
and rules run in list order; the first reason wins. Add a rule by appending a
function to ``DEFAULT_PREDICATES``.
"""
from __future__ import annotations

import enum
from typing import Callable, Sequence

from notifier.core.exceptions import EligibilityFailure
from notifier.models.models import (
    DELIVERY_RETURN_METHOD,
    TERMINAL_ORDER_STATUSES,
    Order,
    ReminderRecord,
)


class CancellationReason(str, enum.Enum):
    ORDER_NOT_FOUND = "order_not_found"
    ORDER_TERMINAL = "order_terminal"
    DELIVERY_ORDER = "delivery_order"


Predicate = Callable[[ReminderRecord, "Order | None"], "CancellationReason | None"]


def order_exists(reminder: ReminderRecord, order: Order | None) -> CancellationReason | None:
    return CancellationReason.ORDER_NOT_FOUND if order is None else None


def order_not_terminal(reminder: ReminderRecord, order: Order | None) -> CancellationReason | None:
    """Collected, disposed and cancelled orders need no collection reminder."""
    if order is not None and order.status in TERMINAL_ORDER_STATUSES:
        return CancellationReason.ORDER_TERMINAL
    return None


def order_not_delivery(reminder: ReminderRecord, order: Order | None) -> CancellationReason | None:
    """Delivery orders come to the customer; there is nothing to collect."""
    if order is not None and order.return_method == DELIVERY_RETURN_METHOD:
        return CancellationReason.DELIVERY_ORDER
    return None


DEFAULT_PREDICATES: tuple[Predicate, ...] = (
    order_exists,
    order_not_terminal,
    order_not_delivery,
)


def evaluate(
    reminder: ReminderRecord,
    order: Order | None,
    predicates: Sequence[Predicate] = DEFAULT_PREDICATES,
) -> CancellationReason | None:
    for predicate in predicates:
        reason = predicate(reminder, order)
        if reason is not None:
            return reason
    return None


def ensure_eligible(
    reminder: ReminderRecord,
    order: Order | None,
    predicates: Sequence[Predicate] = DEFAULT_PREDICATES,
) -> None:
    reason = evaluate(reminder, order, predicates)
    if reason is None:
        return
    detail = {
        CancellationReason.ORDER_NOT_FOUND: f"Order {reminder.order_id} not found",
        CancellationReason.ORDER_TERMINAL: (
            f"Order already {order.status}" if order is not None else None
        ),
        CancellationReason.DELIVERY_ORDER: "Delivery order - no collection reminder needed",
    }.get(reason)
    raise EligibilityFailure(reason, detail)
