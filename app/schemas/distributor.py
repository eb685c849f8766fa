from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, Money


class InventoryAdjust(BaseCreateSchema):
    product_id: int
    delta: int


class InventoryResponse(BaseResponseSchema):
    id: int
    distributor_id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    updated_at: datetime


class DistributorStatsResponse(BaseModel):
    total: Money
    this_month: Money
    pending_deliveries: int


class DistributorCommissionResponse(BaseResponseSchema):
    id: int
    distributor_id: int
    order_id: int
    amount: Money
    status: str
    paid_at: Optional[datetime] = None
    created_at: datetime
