"""Distributor fulfilment models: stock on hand and per-delivery commission."""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import MoneyType

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.order import Order
    from app.models.product import Product


class DistributorCommissionStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class DistributorCommission(Base):
    """
    Commission earned by a distributor for delivering an order.
    Created once when an assigned order reaches DELIVERED.
    """
    __tablename__ = "distributor_commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    distributor_id: Mapped[int] = mapped_column(
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

    amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Share of order total"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=DistributorCommissionStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PAID"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    distributor: Mapped["User"] = relationship("User")
    order: Mapped["Order"] = relationship("Order")

    def __repr__(self) -> str:
        return f"<DistributorCommission(order_id={self.order_id}, amount={self.amount})>"


class DistributorInventory(Base):
    """Stock held by a distributor, one row per product."""
    __tablename__ = "distributor_inventory"
    __table_args__ = (
        UniqueConstraint('distributor_id', 'product_id', name='uq_distributor_product'),
        CheckConstraint('quantity >= 0', name='ck_distributor_inventory_non_negative'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    distributor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    product: Mapped["Product"] = relationship("Product", lazy="selectin")

    def __repr__(self) -> str:
        return f"<DistributorInventory(distributor_id={self.distributor_id}, product_id={self.product_id}, qty={self.quantity})>"
