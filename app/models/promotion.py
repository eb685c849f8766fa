"""Retail promotional codes."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import MoneyType


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"  # discount_value is a percent, e.g. 10 for 10%
    FIXED = "FIXED"            # discount_value is an amount off the subtotal


class Promotion(Base):
    """
    Promo code applied to retail checkouts.
    Wholesale orders are priced by tier and never take a promotion.
    """
    __tablename__ = "promotions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Stored uppercase"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.PERCENTAGE.value,
        comment="PERCENTAGE, FIXED"
    )
    discount_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    min_order_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    max_discount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Promotion(code='{self.code}', type='{self.discount_type}')>"
