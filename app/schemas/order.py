from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money, OptionalMoney
from app.schemas.pricing import CartItemInput


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    id: int
    product_id: int
    product_name: str
    flavor: str
    strength: str
    quantity: int
    unit_price: Money
    line_total: Money


class StatusHistoryResponse(BaseResponseSchema):
    id: int
    from_status: Optional[str] = None
    to_status: str
    changed_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Checkout request. The cart kind follows the buyer's account."""
    items: List[CartItemInput] = Field(..., min_length=1)
    payment_method: str = Field(..., description="CARD, CRYPTO, BANK_TRANSFER, COD, INVOICE or LOAN")
    referral_code: Optional[str] = Field(None, max_length=20)
    promo_code: Optional[str] = Field(None, max_length=50)
    is_consignment: bool = False


class OrderStatusUpdate(BaseCreateSchema):
    status: str = Field(..., description="PROCESSING, SHIPPED, DELIVERED or CANCELLED")
    notes: Optional[str] = None


class ConsignmentStatusUpdate(BaseCreateSchema):
    status: str = Field(..., description="APPROVED or REJECTED")


class PaymentConfirmation(BaseCreateSchema):
    """Payment processor callback."""
    outcome: str = Field(..., description="SUCCEEDED, PENDING or FAILED")
    amount: Decimal = Field(..., ge=0)


class PaymentVerification(BaseCreateSchema):
    notes: Optional[str] = None


class DistributorAssignment(BaseCreateSchema):
    distributor_id: int


class ReferralApply(BaseCreateSchema):
    referral_code: str = Field(..., min_length=1, max_length=20)


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: int
    user_id: Optional[int] = None
    distributor_id: Optional[int] = None
    is_wholesale: bool
    status: str
    payment_method: str
    payment_status: str
    subtotal: Money
    discount_amount: Money
    shipping_cost: Money
    total: Money
    promo_code: Optional[str] = None
    referrer_id: Optional[int] = None
    referral_code: Optional[str] = None
    commission_amount: OptionalMoney = None
    commission_type: Optional[str] = None
    commission_paid: bool
    wholesale_loan_id: Optional[int] = None
    is_consignment: bool
    consignment_status: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderDetailResponse(OrderResponse):
    items: List[OrderItemResponse] = []
    status_history: List[StatusHistoryResponse] = []


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int
