from pydantic import Field
from typing import Optional, Dict
from datetime import datetime
from decimal import Decimal

from app.schemas.base import BaseResponseSchema, BaseUpdateSchema, Money


class WholesaleStatusUpdate(BaseUpdateSchema):
    status: str = Field(..., description="PENDING, APPROVED, REJECTED or BLOCKED")


class CustomPricingUpdate(BaseUpdateSchema):
    """Overrides keyed "{flavor}_{strength}_{tier}", e.g. "Mint_6mg_TIER_2"."""
    custom_pricing: Dict[str, Decimal] = Field(default_factory=dict)


class UserResponse(BaseResponseSchema):
    id: int
    username: str
    email: Optional[str] = None
    role: str
    is_active: bool
    wholesale_status: Optional[str] = None
    custom_pricing: Optional[Dict[str, str]] = None
    commission: Money
    commission_tier: str
    total_referrals: int
    referral_code: Optional[str] = None
    created_at: datetime
