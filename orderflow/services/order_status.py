"""Order status transition helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from orderflow.models.enums import OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PLACED: {OrderStatus.ACCEPTED, OrderStatus.CANCELLED},
    OrderStatus.ACCEPTED: {OrderStatus.ASSIGNED, OrderStatus.CANCELLED},
    OrderStatus.ASSIGNED: {OrderStatus.DELIVERING},
    OrderStatus.DELIVERING: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

ACTIVE_DELIVERY_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.ASSIGNED, OrderStatus.DELIVERING})
CANCELLABLE_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.PLACED, OrderStatus.ACCEPTED})

_STAMP_COLUMNS: dict[OrderStatus, str] = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.ASSIGNED: "assigned_at",
    OrderStatus.DELIVERING: "delivering_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Return whether order can move from current to new status."""
    return new in ALLOWED_TRANSITIONS.get(current, set())


def transition_values(new_status: OrderStatus, now: datetime) -> dict[str, Any]:
    """Column values written together with a status change."""
    values: dict[str, Any] = {"status": new_status, "status_updated_at": now}
    stamp_column = _STAMP_COLUMNS.get(new_status)
    if stamp_column is not None:
        values[stamp_column] = now
    return values
