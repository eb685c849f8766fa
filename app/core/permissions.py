"""
Role policy for the commerce core.

A single table maps each restricted operation to the roles allowed to run
it. Services call ensure_allowed() before touching any row; the HTTP layer
never re-implements these checks.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from app.core.exceptions import PermissionDenied
from app.models.user import User, UserRole


class Operation(str, Enum):
    """Role-restricted operations."""
    VERIFY_PAYMENT = "orders:verify_payment"
    CONFIRM_PAYMENT = "orders:confirm_payment"
    UPDATE_ORDER_STATUS = "orders:update_status"
    SET_CONSIGNMENT_STATUS = "orders:set_consignment_status"
    ASSIGN_DISTRIBUTOR = "orders:assign_distributor"
    LIST_ALL_ORDERS = "orders:list_all"
    VIEW_ANY_ORDER = "orders:view_any"
    MANAGE_ANY_ORDER = "orders:manage_any"
    LIST_DISTRIBUTOR_ORDERS = "orders:list_distributor"
    SET_LOAN_STATUS = "loans:set_status"
    REQUEST_LOAN = "loans:request"
    REQUEST_LOAN_FOR_ANY = "loans:request_any"
    VIEW_ALL_LOANS = "loans:view_all"
    VIEW_REFERRAL_STATS = "commissions:view_all"
    MANAGE_PAYOUTS = "commissions:payouts"
    ADJUST_COMMISSION = "commissions:adjust"
    MANAGE_DISTRIBUTOR_INVENTORY = "distributors:inventory"
    VIEW_DISTRIBUTOR_DASHBOARD = "distributors:dashboard"
    ACT_FOR_ANY_DISTRIBUTOR = "distributors:any"
    PAY_DISTRIBUTOR_COMMISSION = "distributors:pay_commission"
    MANAGE_WHOLESALE_ACCOUNTS = "users:wholesale_accounts"


_ADMIN = frozenset({UserRole.ADMIN})

POLICY: Dict[Operation, FrozenSet[UserRole]] = {
    Operation.VERIFY_PAYMENT: _ADMIN,
    Operation.CONFIRM_PAYMENT: _ADMIN,
    Operation.UPDATE_ORDER_STATUS: frozenset({UserRole.ADMIN, UserRole.DISTRIBUTOR}),
    Operation.SET_CONSIGNMENT_STATUS: _ADMIN,
    Operation.ASSIGN_DISTRIBUTOR: _ADMIN,
    Operation.LIST_ALL_ORDERS: _ADMIN,
    Operation.VIEW_ANY_ORDER: _ADMIN,
    Operation.MANAGE_ANY_ORDER: _ADMIN,
    Operation.LIST_DISTRIBUTOR_ORDERS: frozenset({UserRole.ADMIN, UserRole.DISTRIBUTOR}),
    Operation.SET_LOAN_STATUS: _ADMIN,
    Operation.REQUEST_LOAN: frozenset({UserRole.ADMIN, UserRole.WHOLESALE}),
    Operation.REQUEST_LOAN_FOR_ANY: _ADMIN,
    Operation.VIEW_ALL_LOANS: _ADMIN,
    Operation.VIEW_REFERRAL_STATS: _ADMIN,
    Operation.MANAGE_PAYOUTS: _ADMIN,
    Operation.ADJUST_COMMISSION: _ADMIN,
    Operation.MANAGE_DISTRIBUTOR_INVENTORY: _ADMIN,
    Operation.VIEW_DISTRIBUTOR_DASHBOARD: frozenset({UserRole.ADMIN, UserRole.DISTRIBUTOR}),
    Operation.ACT_FOR_ANY_DISTRIBUTOR: _ADMIN,
    Operation.PAY_DISTRIBUTOR_COMMISSION: _ADMIN,
    Operation.MANAGE_WHOLESALE_ACCOUNTS: _ADMIN,
}


@dataclass(frozen=True)
class Actor:
    """The caller of a service operation, as established by the auth layer."""
    id: int
    role: UserRole
    wholesale_status: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=UserRole(user.role), wholesale_status=user.wholesale_status)

    def can(self, operation: Operation) -> bool:
        """Policy check without raising, for narrowing a query to the actor's own rows."""
        return is_allowed(operation, self.role)


def is_allowed(operation: Operation, role: UserRole) -> bool:
    """Check the policy table. Unknown operations are denied."""
    return role in POLICY.get(operation, frozenset())


def ensure_allowed(operation: Operation, actor: Actor) -> None:
    """
    Raise PermissionDenied unless the actor's role may run the operation.

    Usage:
        ensure_allowed(Operation.VERIFY_PAYMENT, actor)
    """
    if not is_allowed(operation, actor.role):
        raise PermissionDenied(
            f"Permission denied. {actor.role.value} may not perform {operation.value}",
            details={"operation": operation.value, "role": actor.role.value},
        )
