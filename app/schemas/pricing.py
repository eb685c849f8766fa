from pydantic import BaseModel, Field
from typing import Optional, List

from app.schemas.base import BaseCreateSchema, Money


# ==================== CART INPUT ====================

class CartItemInput(BaseCreateSchema):
    """One cart line as submitted by the storefront."""
    product_id: int
    flavor: str = Field(..., min_length=1, max_length=50)
    strength: str = Field(..., min_length=1, max_length=20)
    quantity: int = Field(..., ge=1)


class QuoteRequest(BaseCreateSchema):
    items: List[CartItemInput] = Field(..., min_length=1)


# ==================== RESPONSES ====================

class TierResponse(BaseModel):
    tier: str
    min_quantity: int
    max_quantity: Optional[int] = None
    unit_price: Money


class QuoteLineResponse(BaseModel):
    product_id: int
    product_name: str
    flavor: str
    strength: str
    quantity: int
    unit_price: Money
    line_total: Money


class QuoteResponse(BaseModel):
    is_wholesale: bool
    total_quantity: int
    tier: Optional[str] = None
    meets_minimum: bool
    minimum_quantity: int
    lines: List[QuoteLineResponse]
    subtotal: Money
