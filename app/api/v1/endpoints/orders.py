from typing import Optional, List
from math import ceil

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentActor, OptionalUser
from app.core.enum_utils import to_enum
from app.core.exceptions import InvalidStatusValue
from app.core.permissions import Operation
from app.models.order import Order, OrderStatus
from app.schemas.commission import CommissionTransactionResponse, ReferralRecordedResponse
from app.schemas.order import (
    ConsignmentStatusUpdate,
    DistributorAssignment,
    OrderCreate,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentConfirmation,
    PaymentVerification,
    ReferralApply,
)
from app.services.order_service import OrderService


router = APIRouter(tags=["Orders"])


def _build_order_response(order: Order) -> OrderResponse:
    """Build OrderResponse from Order model."""
    return OrderResponse.model_validate(order)


def _build_order_detail_response(order: Order) -> OrderDetailResponse:
    """Build OrderDetailResponse (with items and status history) from Order model."""
    return OrderDetailResponse.model_validate(order)


# ==================== CHECKOUT ====================

@router.post("", response_model=OrderDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_in: OrderCreate,
    db: DB,
    current_user: OptionalUser,
):
    """
    Place an order.

    Guests check out retail. Wholesale accounts check out wholesale and must
    be APPROVED. Prices are always taken from the catalog and tier table.
    """
    service = OrderService(db)
    cart = await service.build_cart(order_in.items, current_user)
    order = await service.create_order(
        cart,
        current_user,
        payment_method=order_in.payment_method,
        referral_code=order_in.referral_code,
        promo_code=order_in.promo_code,
        is_consignment=order_in.is_consignment,
    )
    return _build_order_detail_response(order)


# ==================== LISTING ====================

@router.get("", response_model=OrderListResponse)
async def list_orders(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    is_wholesale: Optional[bool] = Query(None),
):
    """
    Get paginated list of orders.
    Admins see all orders; everyone else sees their own.
    """
    service = OrderService(db)

    if not actor.can(Operation.LIST_ALL_ORDERS):
        orders = await service.list_orders_for_user(actor.id)
        total = len(orders)
        page_items = orders[(page - 1) * size:page * size]
    else:
        order_status = None
        if status_filter:
            order_status = to_enum(status_filter, OrderStatus)
            if order_status is None:
                raise InvalidStatusValue(
                    f"Unknown order status: {status_filter}",
                    details={"status": status_filter}
                )
        page_items, total = await service.list_orders(
            actor,
            status=order_status,
            is_wholesale=is_wholesale,
            skip=(page - 1) * size,
            limit=size,
        )

    return OrderListResponse(
        items=[_build_order_response(o) for o in page_items],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/distributor", response_model=List[OrderResponse])
async def list_distributor_orders(
    db: DB,
    actor: CurrentActor,
    distributor_id: Optional[int] = Query(None, description="Admins only"),
):
    """Orders assigned to the calling distributor (or to distributor_id, for admins)."""
    service = OrderService(db)
    orders = await service.list_distributor_orders(actor, distributor_id=distributor_id)
    return [_build_order_response(o) for o in orders]


@router.get("/unassigned", response_model=List[OrderResponse])
async def list_unassigned_orders(
    db: DB,
    actor: CurrentActor,
):
    """Orders waiting for a distributor."""
    service = OrderService(db)
    orders = await service.list_unassigned_orders(actor)
    return [_build_order_response(o) for o in orders]


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: int,
    db: DB,
    actor: CurrentActor,
):
    """Get order details by ID."""
    service = OrderService(db)
    order = await service.get_order(order_id, actor)
    return _build_order_detail_response(order)


# ==================== PAYMENT ====================

@router.post("/{order_id}/verify", response_model=OrderDetailResponse)
async def verify_payment(
    order_id: int,
    db: DB,
    actor: CurrentActor,
    verification: Optional[PaymentVerification] = None,
):
    """Mark a PENDING order as paid after manual verification (admin)."""
    service = OrderService(db)
    order = await service.verify_payment(
        order_id, actor, notes=verification.notes if verification else None
    )
    return _build_order_detail_response(order)


@router.post("/{order_id}/payment", response_model=OrderDetailResponse)
async def confirm_payment(
    order_id: int,
    payment: PaymentConfirmation,
    db: DB,
    actor: CurrentActor,
):
    """Apply a payment processor result to a PENDING order."""
    service = OrderService(db)
    order = await service.confirm_payment(order_id, payment.outcome, payment.amount, actor)
    return _build_order_detail_response(order)


# ==================== LIFECYCLE ====================

@router.patch("/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Update order status (admin, or the assigned distributor)."""
    service = OrderService(db)
    order = await service.update_status(order_id, data.status, actor, notes=data.notes)
    return _build_order_detail_response(order)


@router.patch("/{order_id}/consignment", response_model=OrderDetailResponse)
async def update_consignment_status(
    order_id: int,
    data: ConsignmentStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Approve or reject a consignment order (admin)."""
    service = OrderService(db)
    order = await service.set_consignment_status(order_id, data.status, actor)
    return _build_order_detail_response(order)


@router.post("/{order_id}/assign", response_model=OrderDetailResponse)
async def assign_to_distributor(
    order_id: int,
    data: DistributorAssignment,
    db: DB,
    actor: CurrentActor,
):
    """Assign an order to a distributor for fulfilment (admin)."""
    service = OrderService(db)
    order = await service.assign_to_distributor(order_id, data.distributor_id, actor)
    return _build_order_detail_response(order)


@router.post("/{order_id}/referral", response_model=ReferralRecordedResponse)
async def apply_referral(
    order_id: int,
    data: ReferralApply,
    db: DB,
    actor: CurrentActor,
):
    """
    Attribute an order to a referral code.
    An unknown code is not an error; nothing is recorded.
    """
    service = OrderService(db)
    transaction = await service.apply_referral(order_id, data.referral_code, actor)
    if transaction is None:
        return ReferralRecordedResponse(recorded=False)
    return ReferralRecordedResponse(
        recorded=True,
        transaction=CommissionTransactionResponse.model_validate(transaction),
    )
