from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, MoneyType


class UserRole(str, Enum):
    """Closed set of account roles. Each role gets its own dashboard and workflow."""
    ADMIN = "ADMIN"
    RETAIL = "RETAIL"
    WHOLESALE = "WHOLESALE"
    DISTRIBUTOR = "DISTRIBUTOR"


class WholesaleStatus(str, Enum):
    """Wholesale account review status."""
    PENDING = "PENDING"     # Registered, awaiting admin review
    APPROVED = "APPROVED"   # May place wholesale orders
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"     # Previously approved, suspended by admin


class CommissionTier(str, Enum):
    """Nominal referral tier tracked on the user (rate is not applied, see CommissionService)."""
    STANDARD = "STANDARD"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


# tier -> (minimum lifetime referred orders, nominal rate)
COMMISSION_TIER_TABLE = {
    CommissionTier.STANDARD: (0, Decimal("0.05")),
    CommissionTier.SILVER: (25, Decimal("0.07")),
    CommissionTier.GOLD: (100, Decimal("0.10")),
    CommissionTier.PLATINUM: (250, Decimal("0.12")),
}


class User(Base):
    """
    Account for every role.
    Wholesale-only fields are null/empty for other roles.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("referrer_id IS NULL OR referrer_id <> id", name="ck_user_not_own_referrer"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Basic info
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="ADMIN, RETAIL, WHOLESALE, DISTRIBUTOR"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Wholesale account
    wholesale_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="PENDING, APPROVED, REJECTED, BLOCKED"
    )
    custom_pricing: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Per-customer overrides keyed '{flavor}_{strength}_{tier}'"
    )

    # Referral program
    commission: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False,
        comment="Running total of credited referral commission"
    )
    commission_tier: Mapped[str] = mapped_column(
        String(20),
        default=CommissionTier.STANDARD.value,
        nullable=False
    )
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    referral_code: Mapped[Optional[str]] = mapped_column(
        String(20),
        unique=True,
        nullable=True,
        index=True
    )
    referrer_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

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

    referrer: Mapped[Optional["User"]] = relationship("User", remote_side="User.id")

    @property
    def is_wholesale(self) -> bool:
        return self.role == UserRole.WHOLESALE.value

    @property
    def is_approved_wholesaler(self) -> bool:
        return self.is_wholesale and self.wholesale_status == WholesaleStatus.APPROVED.value

    def __repr__(self) -> str:
        return f"<User(username='{self.username}', role='{self.role}')>"
