from pydantic import Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from app.models.loan import RepaymentType
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money


class LoanCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    # Admins may request on behalf of a wholesaler
    wholesaler_id: Optional[int] = None


class LoanStatusUpdate(BaseCreateSchema):
    status: str = Field(..., description="APPROVED or REJECTED")


class RepaymentCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    type: str = RepaymentType.DIRECT_PAYMENT.value
    referral_transaction_id: Optional[int] = None


class LoanResponse(BaseResponseSchema):
    id: int
    wholesaler_id: int
    amount: Money
    remaining_amount: Money
    status: str
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class RepaymentResponse(BaseResponseSchema):
    id: int
    loan_id: int
    amount: Money
    type: str
    commission_transaction_id: Optional[int] = None
    created_at: datetime
