"""API endpoints for cart quotes and the wholesale tier table."""
from typing import List

from fastapi import APIRouter

from app.api.deps import DB, OptionalUser
from app.schemas.pricing import QuoteRequest, QuoteResponse, QuoteLineResponse, TierResponse
from app.services.order_service import OrderService
from app.services.pricing_engine import TIER_BANDS, quote


router = APIRouter(tags=["Pricing"])


@router.post("/quote", response_model=QuoteResponse)
async def quote_cart(
    quote_in: QuoteRequest,
    db: DB,
    current_user: OptionalUser,
):
    """
    Price a cart without placing an order.

    Wholesale accounts get the tier price for the cart's total quantity,
    with their custom pricing applied; everyone else gets retail prices.
    """
    service = OrderService(db)
    cart = await service.build_cart(quote_in.items, current_user)
    summary = quote(cart)

    return QuoteResponse(
        is_wholesale=summary["is_wholesale"],
        total_quantity=summary["total_quantity"],
        tier=summary["tier"],
        meets_minimum=summary["meets_minimum"],
        minimum_quantity=summary["minimum_quantity"],
        lines=[
            QuoteLineResponse(
                product_id=line.product_id,
                product_name=line.product_name,
                flavor=line.flavor,
                strength=line.strength,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for line in summary["lines"]
        ],
        subtotal=summary["subtotal"],
    )


@router.get("/tiers", response_model=List[TierResponse])
async def list_tiers():
    """Wholesale unit price per quantity band."""
    return [
        TierResponse(
            tier=band.tier.value,
            min_quantity=band.min_quantity,
            max_quantity=band.max_quantity,
            unit_price=band.unit_price,
        )
        for band in TIER_BANDS
    ]
