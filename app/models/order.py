from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import MoneyType

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.product import Product
    from app.models.loan import WholesaleLoan


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "PENDING"         # Created at checkout, awaiting payment
    PAID = "PAID"               # Payment verified
    PROCESSING = "PROCESSING"   # Being picked/packed
    SHIPPED = "SHIPPED"         # Handed to carrier
    DELIVERED = "DELIVERED"     # Final success state
    CANCELLED = "CANCELLED"     # Final failure state


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    # Retail
    CARD = "CARD"
    CRYPTO = "CRYPTO"
    BANK_TRANSFER = "BANK_TRANSFER"
    COD = "COD"
    # Wholesale
    INVOICE = "INVOICE"
    LOAN = "LOAN"


RETAIL_PAYMENT_METHODS = frozenset({
    PaymentMethod.CARD, PaymentMethod.CRYPTO, PaymentMethod.BANK_TRANSFER, PaymentMethod.COD,
})
WHOLESALE_PAYMENT_METHODS = frozenset({PaymentMethod.INVOICE, PaymentMethod.LOAN})


class ConsignmentStatus(str, Enum):
    """Approval sub-state, only meaningful when Order.is_consignment is set."""
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Order(Base):
    """
    Order model for retail and wholesale checkouts.
    Tracks orders from checkout to delivery. Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_user_created', 'user_id', 'created_at'),
        Index('ix_order_referrer', 'referrer_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Buyer (null for guest checkout or after the account was deleted)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    is_wholesale: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Fulfillment
    distributor_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Distributor assigned to fulfil the order"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, PAID, PROCESSING, SHIPPED, DELIVERED, CANCELLED"
    )

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Item totals less promotional discount"
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False
    )
    shipping_cost: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False
    )
    total: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="subtotal + shipping_cost"
    )
    promo_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payment
    payment_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="CARD, CRYPTO, BANK_TRANSFER, COD, INVOICE, LOAN"
    )
    payment_status: Mapped[str] = mapped_column(
        String(50),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PAID, FAILED"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Referral attribution (fixed once set)
    referrer_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    referral_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    commission_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    commission_type: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="RETAIL_REFERRAL, WHOLESALE_REFERRAL"
    )
    commission_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Financing
    wholesale_loan_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("wholesale_loans.id", ondelete="SET NULL"),
        nullable=True
    )

    # Consignment
    is_consignment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consignment_status: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="PENDING_APPROVAL, APPROVED, REJECTED"
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
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
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
        lazy="selectin",
    )
    user: Mapped[Optional["User"]] = relationship("User", foreign_keys=[user_id])
    distributor: Mapped[Optional["User"]] = relationship("User", foreign_keys=[distributor_id])
    wholesale_loan: Mapped[Optional["WholesaleLoan"]] = relationship("WholesaleLoan")

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status='{self.status}', total={self.total})>"


class OrderItem(Base):
    """Order line item model."""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Product snapshot (stored for historical record)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    flavor: Mapped[str] = mapped_column(String(50), nullable=False)
    strength: Mapped[str] = mapped_column(String(20), nullable=False)

    # Quantity & Pricing
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    """Order status change history."""
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)

    changed_by: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(from='{self.from_status}', to='{self.to_status}')>"
