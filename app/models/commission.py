"""Referral commission models.

Supports:
- Per-order referral commission ledger
- Payout batches bundling a referrer's pending commission
"""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, MoneyType

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.order import Order


class CommissionType(str, Enum):
    """Commission type enumeration."""
    RETAIL_REFERRAL = "RETAIL_REFERRAL"
    WHOLESALE_REFERRAL = "WHOLESALE_REFERRAL"


class CommissionStatus(str, Enum):
    """Commission transaction status."""
    PENDING = "PENDING"         # Earned, not yet paid out
    PROCESSING = "PROCESSING"   # Bundled into a payout
    PAID = "PAID"               # Paid out or consumed by a loan repayment
    FAILED = "FAILED"           # Payout failed


class PayoutStatus(str, Enum):
    """Payout status."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"


class CommissionTransaction(Base):
    """
    Ledger row for one referred order.
    At most one per order; the ledger is the source of truth for earnings.
    """
    __tablename__ = "commission_transactions"
    __table_args__ = (
        Index('ix_commission_txn_user_status', 'user_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Earner
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="RETAIL_REFERRAL, WHOLESALE_REFERRAL"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=CommissionStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PROCESSING, PAID, FAILED"
    )

    payout_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("commission_payouts.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User")
    order: Mapped["Order"] = relationship("Order")
    payout: Mapped[Optional["CommissionPayout"]] = relationship(
        "CommissionPayout",
        back_populates="transactions"
    )

    def __repr__(self) -> str:
        return f"<CommissionTransaction(order_id={self.order_id}, amount={self.amount}, status='{self.status}')>"


class CommissionPayout(Base):
    """Payout of a referrer's pending commission."""
    __tablename__ = "commission_payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PayoutStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PROCESSING, PAID, FAILED"
    )

    # Bank/wallet details for the transfer
    payment_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    transactions: Mapped[List["CommissionTransaction"]] = relationship(
        "CommissionTransaction",
        back_populates="payout",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CommissionPayout(user_id={self.user_id}, amount={self.amount}, status='{self.status}')>"
