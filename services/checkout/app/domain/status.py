"""Admin-driven status machines for orders and failed-order records."""

from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidStatusTransition


class OrderStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class FailedOrderStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.NEW: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

FAILED_ORDER_TRANSITIONS: Dict[FailedOrderStatus, FrozenSet[FailedOrderStatus]] = {
    FailedOrderStatus.PENDING: frozenset({FailedOrderStatus.REVIEWED}),
    FailedOrderStatus.REVIEWED: frozenset({FailedOrderStatus.RESOLVED}),
    FailedOrderStatus.RESOLVED: frozenset(),
}


def check_transition(transitions: Dict[Enum, FrozenSet[Enum]], current: str, target: str) -> None:
    """Raise unless ``current -> target`` is allowed. Re-setting the same status is a no-op."""
    if current == target:
        return
    allowed = next((nxt for state, nxt in transitions.items() if state.value == current), None)
    if allowed is None:
        raise InvalidStatusTransition(f"Unknown current status: {current}")
    if target not in {state.value for state in allowed}:
        raise InvalidStatusTransition(f"Cannot move from {current} to {target}")
