"""Wholesale credit: loans and their repayments."""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import MoneyType

if TYPE_CHECKING:
    from app.models.user import User


class LoanStatus(str, Enum):
    """Wholesale loan status."""
    PENDING = "PENDING"     # Requested, awaiting admin decision
    APPROVED = "APPROVED"   # Active, accepts repayments
    REJECTED = "REJECTED"   # Terminal
    PAID = "PAID"           # Terminal, remaining_amount reached 0


class RepaymentType(str, Enum):
    REFERRAL_EARNINGS = "REFERRAL_EARNINGS"
    DIRECT_PAYMENT = "DIRECT_PAYMENT"


class WholesaleLoan(Base):
    """
    Credit extended to a wholesale account.
    remaining_amount stays within [0, amount]; status is PAID exactly when it is 0.
    """
    __tablename__ = "wholesale_loans"
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_loan_amount_positive'),
        CheckConstraint(
            'remaining_amount >= 0 AND remaining_amount <= amount',
            name='ck_loan_remaining_in_range'
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    wholesaler_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=LoanStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, APPROVED, REJECTED, PAID"
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    wholesaler: Mapped["User"] = relationship("User")
    repayments: Mapped[List["LoanRepayment"]] = relationship(
        "LoanRepayment",
        back_populates="loan",
        order_by="LoanRepayment.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WholesaleLoan(id={self.id}, remaining={self.remaining_amount}, status='{self.status}')>"


class LoanRepayment(Base):
    """Immutable record of a repayment against a loan."""
    __tablename__ = "loan_repayments"
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_repayment_amount_positive'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    loan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("wholesale_loans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="REFERRAL_EARNINGS, DIRECT_PAYMENT"
    )

    # Funding source when paid from referral earnings
    commission_transaction_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("commission_transactions.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    loan: Mapped["WholesaleLoan"] = relationship("WholesaleLoan", back_populates="repayments")

    def __repr__(self) -> str:
        return f"<LoanRepayment(loan_id={self.loan_id}, amount={self.amount}, type='{self.type}')>"
