"""
Order status transition table.
"""
import pytest

from marketplace.core.errors import IllegalTransition
from marketplace.models.order import ADMIN_TRANSITIONS, OrderStatus, check_transition


@pytest.mark.parametrize("current, target", [
    (OrderStatus.PENDING, OrderStatus.APPROVED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PENDING, OrderStatus.PENDING),
    (OrderStatus.APPROVED, OrderStatus.DELIVERED),
    (OrderStatus.APPROVED, OrderStatus.REFUNDED),
])
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize("current", [OrderStatus.CANCELLED, OrderStatus.DELIVERED, OrderStatus.REFUNDED])
def test_terminal_states_have_no_exit(current):
    for target in OrderStatus:
        with pytest.raises(IllegalTransition):
            check_transition(current, target)


def test_pending_cannot_skip_to_delivered():
    with pytest.raises(IllegalTransition) as exc_info:
        check_transition(OrderStatus.PENDING, OrderStatus.DELIVERED)
    assert exc_info.value.status_code == 409
    assert exc_info.value.to_dict()["current"] == "pending"
    assert exc_info.value.to_dict()["requested"] == "delivered"


def test_admin_may_only_cancel_or_refund():
    check_transition(OrderStatus.PENDING, OrderStatus.CANCELLED, ADMIN_TRANSITIONS)
    check_transition(OrderStatus.APPROVED, OrderStatus.REFUNDED, ADMIN_TRANSITIONS)
    with pytest.raises(IllegalTransition):
        check_transition(OrderStatus.PENDING, OrderStatus.APPROVED, ADMIN_TRANSITIONS)
    with pytest.raises(IllegalTransition):
        check_transition(OrderStatus.APPROVED, OrderStatus.DELIVERED, ADMIN_TRANSITIONS)
