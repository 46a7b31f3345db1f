import pytest

from app.domain.errors import InvalidStatusTransition
from app.domain.status import FAILED_ORDER_TRANSITIONS, ORDER_TRANSITIONS, check_transition


@pytest.mark.parametrize("current, target", [
    ("new", "in_progress"),
    ("new", "cancelled"),
    ("in_progress", "delivered"),
    ("in_progress", "cancelled"),
    ("delivered", "delivered"),
])
def test_allowed_order_transitions(current, target):
    check_transition(ORDER_TRANSITIONS, current, target)


@pytest.mark.parametrize("current, target", [
    ("new", "delivered"),
    ("delivered", "cancelled"),
    ("cancelled", "new"),
    ("in_progress", "new"),
    ("shipped", "delivered"),
])
def test_rejected_order_transitions(current, target):
    with pytest.raises(InvalidStatusTransition):
        check_transition(ORDER_TRANSITIONS, current, target)


def test_failed_order_review_flow():
    check_transition(FAILED_ORDER_TRANSITIONS, "pending", "reviewed")
    check_transition(FAILED_ORDER_TRANSITIONS, "reviewed", "resolved")
    with pytest.raises(InvalidStatusTransition):
        check_transition(FAILED_ORDER_TRANSITIONS, "pending", "resolved")
    with pytest.raises(InvalidStatusTransition):
        check_transition(FAILED_ORDER_TRANSITIONS, "resolved", "pending")
