"""
Order State Machine

This module is the SINGLE SOURCE OF TRUTH for all order status transitions.
All status changes must go through this module.

    PENDING ──► PAID ──► PROCESSING ──► SHIPPED ──► DELIVERED
       │          │           │             │
       └──────────┴───────────┴─────────────┴──► CANCELLED

Consignment orders carry a sub-state (PENDING_APPROVAL / APPROVED / REJECTED)
that must be APPROVED before the order may leave PENDING.
"""

from typing import List, Dict, Optional
from datetime import datetime, timezone

from app.core.exceptions import InvalidTransition
from app.models.order import OrderStatus, ConsignmentStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [
        OrderStatus.PAID.value,         # Payment verified
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PAID.value: [
        OrderStatus.PROCESSING.value,   # Picking started
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PROCESSING.value: [
        OrderStatus.SHIPPED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.SHIPPED.value: [
        OrderStatus.DELIVERED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.DELIVERED.value: [],    # Terminal state
    OrderStatus.CANCELLED.value: [],    # Terminal state
}

CONSIGNMENT_TRANSITIONS: Dict[str, List[str]] = {
    ConsignmentStatus.PENDING_APPROVAL.value: [
        ConsignmentStatus.APPROVED.value,
        ConsignmentStatus.REJECTED.value,
    ],
    ConsignmentStatus.APPROVED.value: [],
    ConsignmentStatus.REJECTED.value: [],
}

# No transitions leave these
TERMINAL_STATUSES = [OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value]

# Orders a distributor may still be assigned to
ASSIGNABLE_STATUSES = [OrderStatus.PENDING.value, OrderStatus.PAID.value]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return ORDER_TRANSITIONS.get(current_status, [])


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in TERMINAL_STATUSES


def can_assign(status: str) -> bool:
    """Can a distributor be assigned to an order in this status?"""
    return status in ASSIGNABLE_STATUSES


def validate_transition(order, new_status: str) -> None:
    """
    Validate a status transition for an order. Raises InvalidTransition if invalid.

    Consignment orders must be APPROVED before they may leave PENDING
    (cancelling is always possible).
    """
    current_status = order.status

    if not can_transition(current_status, new_status):
        if is_terminal(current_status):
            raise InvalidTransition(
                f"Order in '{current_status}' status cannot be modified. This is a terminal state.",
                details={"order_id": order.id, "from": current_status, "to": new_status}
            )
        raise InvalidTransition(
            f"Cannot change order from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(get_allowed_transitions(current_status))}",
            details={"order_id": order.id, "from": current_status, "to": new_status}
        )

    if (
        order.is_consignment
        and current_status == OrderStatus.PENDING.value
        and new_status != OrderStatus.CANCELLED.value
        and order.consignment_status != ConsignmentStatus.APPROVED.value
    ):
        raise InvalidTransition(
            f"Consignment order is {order.consignment_status}; it must be APPROVED first",
            details={"order_id": order.id, "consignment_status": order.consignment_status}
        )


def validate_consignment_transition(order, new_consignment_status: str) -> None:
    if not order.is_consignment:
        raise InvalidTransition(
            f"Order {order.id} is not a consignment order",
            details={"order_id": order.id}
        )

    current = order.consignment_status
    if new_consignment_status not in CONSIGNMENT_TRANSITIONS.get(current, []):
        raise InvalidTransition(
            f"Cannot change consignment status from '{current}' to '{new_consignment_status}'",
            details={"order_id": order.id, "from": current, "to": new_consignment_status}
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_order(order, new_status: str) -> Optional[str]:
    """
    Transition an order to a new status.

    Validates the transition, updates the status and stamps the timestamp
    fields for the new state. Returns the previous status so the caller
    can write the history row.

    Raises:
        InvalidTransition: If transition is not allowed
    """
    current_status = order.status

    validate_transition(order, new_status)

    order.status = new_status

    now = datetime.now(timezone.utc)

    if new_status == OrderStatus.DELIVERED.value:
        order.delivered_at = now

    elif new_status == OrderStatus.CANCELLED.value:
        order.cancelled_at = now

    return current_status

