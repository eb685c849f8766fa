"""
Wholesale Loan Service

Credit extended to approved wholesale accounts, typically to finance an
order paid with the LOAN method.

    PENDING ──► APPROVED ──(repayments reach 0)──► PAID
       │
       └──────► REJECTED

A loan only accepts repayments while APPROVED, and a repayment may never
exceed the remaining balance.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import enum_values, to_enum
from app.core.exceptions import (
    CommissionTransactionNotFound,
    InvalidRepaymentAmount,
    InvalidStatusValue,
    InvalidTransition,
    LoanNotApproved,
    LoanNotFound,
    OverRepayment,
    PermissionDenied,
    UserNotFound,
    ValidationError,
)
from app.core.permissions import Actor, Operation, ensure_allowed
from app.models.commission import CommissionStatus
from app.models.loan import LoanRepayment, LoanStatus, RepaymentType, WholesaleLoan
from app.models.user import User, UserRole
from app.services.commission_service import CommissionService
from app.services.pricing_engine import ZERO, round_money

logger = logging.getLogger(__name__)


# current_status -> [statuses an admin may set]
LOAN_TRANSITIONS: Dict[str, List[str]] = {
    LoanStatus.PENDING.value: [LoanStatus.APPROVED.value, LoanStatus.REJECTED.value],
    LoanStatus.APPROVED.value: [],  # Leaves only through repayment
    LoanStatus.REJECTED.value: [],
    LoanStatus.PAID.value: [],
}


class LoanService:
    """Service for wholesale loans and repayments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOAN CREATION ====================

    async def create_loan(
        self,
        wholesaler_id: int,
        amount: Decimal,
        actor: Optional[Actor] = None,
    ) -> WholesaleLoan:
        """Request a loan. It starts PENDING with the full amount outstanding."""
        if actor is not None:
            ensure_allowed(Operation.REQUEST_LOAN, actor)
            if not actor.can(Operation.REQUEST_LOAN_FOR_ANY) and actor.id != wholesaler_id:
                raise PermissionDenied(
                    "Wholesalers may only request loans for themselves",
                    details={"wholesaler_id": wholesaler_id}
                )

        loan = await self.build_loan(wholesaler_id, amount)
        await self.db.commit()
        return loan

    async def build_loan(self, wholesaler_id: int, amount: Decimal) -> WholesaleLoan:
        """Create a PENDING loan without committing (used by checkout)."""
        amount = round_money(Decimal(amount)) if amount is not None else None
        if amount is None or amount <= 0:
            raise ValidationError(
                "Loan amount must be positive",
                details={"amount": str(amount)}
            )

        wholesaler = await self.db.get(User, wholesaler_id)
        if not wholesaler:
            raise UserNotFound(f"User {wholesaler_id} not found", details={"user_id": wholesaler_id})
        if wholesaler.role != UserRole.WHOLESALE.value:
            raise ValidationError(
                "Loans can only be issued to wholesale accounts",
                details={"user_id": wholesaler_id, "role": wholesaler.role}
            )

        loan = WholesaleLoan(
            wholesaler_id=wholesaler_id,
            amount=amount,
            remaining_amount=amount,
            status=LoanStatus.PENDING.value,
        )
        self.db.add(loan)
        await self.db.flush()

        logger.info(f"Loan {loan.id} requested by wholesaler {wholesaler_id} for {amount}")
        return loan

    # ==================== STATUS ====================

    async def set_status(self, loan_id: int, status, actor: Actor) -> WholesaleLoan:
        """Admin decision on a pending loan."""
        ensure_allowed(Operation.SET_LOAN_STATUS, actor)

        new_status = to_enum(status, LoanStatus)
        if new_status is None:
            raise InvalidStatusValue(
                f"Unknown loan status: {status}",
                details={"status": str(status), "allowed": enum_values(LoanStatus)}
            )

        loan = await self._get_loan_for_update(loan_id)

        if new_status.value not in LOAN_TRANSITIONS.get(loan.status, []):
            logger.warning(f"Rejected loan {loan_id} transition {loan.status} -> {new_status.value}")
            raise InvalidTransition(
                f"Cannot change loan from '{loan.status}' to '{new_status.value}'",
                details={"loan_id": loan_id, "from": loan.status, "to": new_status.value}
            )

        loan.status = new_status.value
        if new_status == LoanStatus.APPROVED:
            loan.approved_at = datetime.now(timezone.utc)

        await self.db.commit()

        logger.info(f"Loan {loan_id} set to {new_status.value} by {actor.id}")
        return loan

    # ==================== REPAYMENTS ====================

    async def apply_repayment(
        self,
        loan_id: int,
        amount: Decimal,
        repayment_type=RepaymentType.DIRECT_PAYMENT,
        referral_transaction_id: Optional[int] = None,
        actor: Optional[Actor] = None,
    ) -> LoanRepayment:
        """
        Apply a repayment to an APPROVED loan.

        REFERRAL_EARNINGS repayments consume one of the wholesaler's PENDING
        commission transactions in full: the repayment amount must equal it.
        """
        amount = round_money(Decimal(amount)) if amount is not None else None
        if amount is None or amount <= 0:
            raise InvalidRepaymentAmount(
                "Repayment amount must be positive",
                details={"amount": str(amount)}
            )

        rtype = to_enum(repayment_type, RepaymentType)
        if rtype is None:
            raise ValidationError(
                f"Unknown repayment type: {repayment_type}",
                details={"type": str(repayment_type)}
            )
        if rtype == RepaymentType.REFERRAL_EARNINGS and referral_transaction_id is None:
            raise ValidationError(
                "Referral earnings repayments must reference a commission transaction",
                details={"type": rtype.value}
            )

        loan = await self._get_loan_for_update(loan_id)
        self._ensure_can_view(loan, actor)

        # A fully repaid loan reports the overpayment, not its status
        repayable = loan.status in (LoanStatus.APPROVED.value, LoanStatus.PAID.value)
        if repayable and amount > loan.remaining_amount:
            logger.warning(f"Over-repayment on loan {loan_id}: {amount} > {loan.remaining_amount}")
            raise OverRepayment(
                f"Repayment {amount} exceeds remaining balance {loan.remaining_amount}",
                details={"loan_id": loan_id, "amount": str(amount), "remaining": str(loan.remaining_amount)}
            )

        if loan.status != LoanStatus.APPROVED.value:
            raise LoanNotApproved(
                f"Loan {loan_id} is {loan.status}; repayments require an APPROVED loan",
                details={"loan_id": loan_id, "status": loan.status}
            )

        commission_txn = None
        if rtype == RepaymentType.REFERRAL_EARNINGS:
            commission_txn = await CommissionService(self.db).get_transaction_for_update(referral_transaction_id)
            if commission_txn.user_id != loan.wholesaler_id:
                raise CommissionTransactionNotFound(
                    f"Commission transaction {referral_transaction_id} not found",
                    details={"transaction_id": referral_transaction_id}
                )
            if commission_txn.status != CommissionStatus.PENDING.value:
                raise InvalidTransition(
                    f"Commission transaction {commission_txn.id} is {commission_txn.status}, not PENDING",
                    details={"transaction_id": commission_txn.id, "status": commission_txn.status}
                )
            # Transactions are consumed whole
            if commission_txn.amount != amount:
                raise InvalidRepaymentAmount(
                    f"Repayment must use the full {commission_txn.amount} of commission transaction {commission_txn.id}",
                    details={"transaction_id": commission_txn.id, "available": str(commission_txn.amount)}
                )

        loan.remaining_amount = round_money(loan.remaining_amount - amount)
        if loan.remaining_amount == ZERO:
            loan.status = LoanStatus.PAID.value
            loan.paid_at = datetime.now(timezone.utc)

        repayment = LoanRepayment(
            loan_id=loan.id,
            amount=amount,
            type=rtype.value,
            commission_transaction_id=commission_txn.id if commission_txn else None,
        )
        self.db.add(repayment)

        if commission_txn is not None:
            commission_txn.status = CommissionStatus.PAID.value

        await self.db.commit()

        logger.info(
            f"Loan {loan_id} repaid {amount} via {rtype.value}, remaining {loan.remaining_amount}"
        )
        return repayment

    # ==================== QUERIES ====================

    async def get_loan(self, loan_id: int, actor: Optional[Actor] = None) -> WholesaleLoan:
        loan = await self.db.get(WholesaleLoan, loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found", details={"loan_id": loan_id})
        self._ensure_can_view(loan, actor)
        return loan

    async def list_loans(
        self,
        actor: Actor,
        wholesaler_id: Optional[int] = None,
        status: Optional[LoanStatus] = None,
    ) -> List[WholesaleLoan]:
        """Admins see every loan (optionally filtered); wholesalers see their own."""
        if not actor.can(Operation.VIEW_ALL_LOANS):
            wholesaler_id = actor.id

        stmt = select(WholesaleLoan).order_by(WholesaleLoan.created_at.desc(), WholesaleLoan.id.desc())
        if wholesaler_id is not None:
            stmt = stmt.where(WholesaleLoan.wholesaler_id == wholesaler_id)
        if status:
            stmt = stmt.where(WholesaleLoan.status == status.value)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_repayments(self, loan_id: int, actor: Optional[Actor] = None) -> List[LoanRepayment]:
        await self.get_loan(loan_id, actor)
        result = await self.db.execute(
            select(LoanRepayment)
            .where(LoanRepayment.loan_id == loan_id)
            .order_by(LoanRepayment.id)
        )
        return list(result.scalars().all())

    # ==================== HELPER METHODS ====================

    async def _get_loan_for_update(self, loan_id: int) -> WholesaleLoan:
        result = await self.db.execute(
            select(WholesaleLoan)
            .where(WholesaleLoan.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        loan = result.scalar_one_or_none()
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found", details={"loan_id": loan_id})
        return loan

    @staticmethod
    def _ensure_can_view(loan: WholesaleLoan, actor: Optional[Actor]) -> None:
        if actor is None or actor.can(Operation.VIEW_ALL_LOANS):
            return
        if actor.id != loan.wholesaler_id:
            raise PermissionDenied(
                "You do not have access to this loan",
                details={"loan_id": loan.id}
            )
