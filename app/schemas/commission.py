"""Pydantic schemas for the referral commission ledger."""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money


# ==================== TRANSACTIONS ====================

class CommissionTransactionResponse(BaseResponseSchema):
    id: int
    user_id: int
    order_id: int
    amount: Money
    type: str
    status: str
    payout_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# ==================== STATS ====================

class ReferralStatsResponse(BaseModel):
    total_referrals: int
    total_earnings: Money
    pending_earnings: Money
    last_referral_date: Optional[datetime] = None


class ReferralSummaryResponse(BaseModel):
    total_commission_paid: Money
    total_commission_pending: Money
    active_referrers: int


class ReferrerStatsResponse(BaseModel):
    user_id: int
    username: str
    role: str
    referral_code: Optional[str] = None
    commission_tier: str
    total_referrals: int
    commission: Money
    total_earnings: Money
    pending_earnings: Money


# ==================== REFERRAL CODES ====================

class ReferralCodeResponse(BaseModel):
    referral_code: str
    referral_link: Optional[str] = None


class ReferralCodeValidation(BaseModel):
    code: str
    valid: bool
    referrer_username: Optional[str] = None


class ReferralRecordedResponse(BaseModel):
    """Result of attaching a referral code to an order."""
    recorded: bool
    transaction: Optional[CommissionTransactionResponse] = None


# ==================== PAYOUTS ====================

class PayoutCreate(BaseCreateSchema):
    user_id: int
    payment_details: Optional[dict] = None


class PayoutSettle(BaseCreateSchema):
    succeeded: bool


class PayoutResponse(BaseResponseSchema):
    id: int
    user_id: int
    amount: Money
    status: str
    payment_details: Optional[dict] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    transactions: List[CommissionTransactionResponse] = []


class CommissionAdjust(BaseCreateSchema):
    """Admin override of a user's commission balance."""
    commission: Decimal = Field(..., ge=0)
