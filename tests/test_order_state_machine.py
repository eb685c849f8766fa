"""Tests for the order status transition rules."""
from types import SimpleNamespace

import pytest

from app.core.exceptions import InvalidTransition
from app.models.order import ConsignmentStatus, OrderStatus
from app.services import order_state_machine as sm


def _order(status: str, is_consignment: bool = False, consignment_status=None):
    return SimpleNamespace(
        id=1,
        status=status,
        is_consignment=is_consignment,
        consignment_status=consignment_status,
        delivered_at=None,
        cancelled_at=None,
    )


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(sm.ORDER_TRANSITIONS) == {s.value for s in OrderStatus}

    def test_forward_path(self):
        order = _order(OrderStatus.PENDING.value)
        for target in ("PAID", "PROCESSING", "SHIPPED", "DELIVERED"):
            sm.transition_order(order, target)
        assert order.status == "DELIVERED"
        assert order.delivered_at is not None

    def test_paid_to_processing_accepted(self):
        order = _order(OrderStatus.PAID.value)
        previous = sm.transition_order(order, OrderStatus.PROCESSING.value)
        assert previous == "PAID"
        assert order.status == "PROCESSING"

    def test_delivered_to_processing_rejected(self):
        order = _order(OrderStatus.DELIVERED.value)
        with pytest.raises(InvalidTransition):
            sm.transition_order(order, OrderStatus.PROCESSING.value)
        assert order.status == "DELIVERED"

    def test_skipping_states_rejected(self):
        order = _order(OrderStatus.PENDING.value)
        with pytest.raises(InvalidTransition):
            sm.transition_order(order, OrderStatus.SHIPPED.value)

    @pytest.mark.parametrize("status", ["PENDING", "PAID", "PROCESSING", "SHIPPED"])
    def test_cancel_from_any_non_terminal_state(self, status):
        order = _order(status)
        sm.transition_order(order, OrderStatus.CANCELLED.value)
        assert order.status == "CANCELLED"
        assert order.cancelled_at is not None

    def test_terminal_states(self):
        assert sm.is_terminal("DELIVERED")
        assert sm.is_terminal("CANCELLED")
        assert not sm.is_terminal("SHIPPED")
        with pytest.raises(InvalidTransition):
            sm.transition_order(_order("CANCELLED"), "PENDING")

    def test_assignable_statuses(self):
        assert sm.can_assign("PENDING")
        assert sm.can_assign("PAID")
        assert not sm.can_assign("SHIPPED")


class TestConsignmentGate:
    def test_unapproved_consignment_cannot_be_paid(self):
        order = _order("PENDING", is_consignment=True, consignment_status=ConsignmentStatus.PENDING_APPROVAL.value)
        with pytest.raises(InvalidTransition):
            sm.transition_order(order, "PAID")

    def test_unapproved_consignment_can_be_cancelled(self):
        order = _order("PENDING", is_consignment=True, consignment_status=ConsignmentStatus.REJECTED.value)
        sm.transition_order(order, "CANCELLED")
        assert order.status == "CANCELLED"

    def test_approved_consignment_proceeds(self):
        order = _order("PENDING", is_consignment=True, consignment_status=ConsignmentStatus.APPROVED.value)
        sm.transition_order(order, "PAID")
        assert order.status == "PAID"

    def test_consignment_decision_is_final(self):
        order = _order("PENDING", is_consignment=True, consignment_status=ConsignmentStatus.APPROVED.value)
        with pytest.raises(InvalidTransition):
            sm.validate_consignment_transition(order, ConsignmentStatus.REJECTED.value)

    def test_non_consignment_order_has_no_consignment_status(self):
        with pytest.raises(InvalidTransition):
            sm.validate_consignment_transition(_order("PENDING"), ConsignmentStatus.APPROVED.value)
