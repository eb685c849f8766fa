"""
Pricing Engine

Wholesale orders are priced by quantity tier: the TOTAL quantity across the
whole cart selects one tier, and every line is billed at that tier's unit
price (optionally overridden per customer). Retail orders use the product's
flat price and may take a promotional discount.

Tier Table:
━━━━━━━━━━━
    TIER_1       100 -    249   8.00
    TIER_2       250 -    499   7.50
    TIER_3       500 -    999   7.00
    TIER_4     1,000 -  4,999   6.50
    TIER_5     5,000 -  9,999   6.00
    TIER_6    10,000 - 24,999   5.50
    TIER_7    25,000+           5.00

Usage:
    from app.services.pricing_engine import WholesaleCart

    cart = WholesaleCart(custom_pricing=user.custom_pricing)
    cart.add_item(product_id=1, flavor="Mint", strength="6mg", quantity=300)
    cart.subtotal  # Decimal('2250.00')
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from app.config import settings
from app.core.exceptions import (
    BelowMinimumOrder,
    InvalidQuantity,
    ProductNotFound,
    PromotionNotApplicable,
)
from app.models.promotion import DiscountType, Promotion


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(amount: Decimal) -> Decimal:
    """Round half-up to 2 decimal places."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


# ==================== TIER TABLE ====================

class PricingTier(str, Enum):
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"
    TIER_4 = "TIER_4"
    TIER_5 = "TIER_5"
    TIER_6 = "TIER_6"
    TIER_7 = "TIER_7"


@dataclass(frozen=True)
class TierBand:
    tier: PricingTier
    min_quantity: int
    max_quantity: Optional[int]     # None = open ended
    unit_price: Decimal


# Ascending by min_quantity; bands are contiguous
TIER_BANDS: Tuple[TierBand, ...] = (
    TierBand(PricingTier.TIER_1, 100, 249, Decimal("8.00")),
    TierBand(PricingTier.TIER_2, 250, 499, Decimal("7.50")),
    TierBand(PricingTier.TIER_3, 500, 999, Decimal("7.00")),
    TierBand(PricingTier.TIER_4, 1000, 4999, Decimal("6.50")),
    TierBand(PricingTier.TIER_5, 5000, 9999, Decimal("6.00")),
    TierBand(PricingTier.TIER_6, 10000, 24999, Decimal("5.50")),
    TierBand(PricingTier.TIER_7, 25000, None, Decimal("5.00")),
)

BANDS_BY_TIER: Dict[PricingTier, TierBand] = {band.tier: band for band in TIER_BANDS}


def band_for_quantity(total_quantity: int) -> Optional[TierBand]:
    """
    Find the band for a cart-wide quantity.

    Scans from the highest minimum down; the first band whose minimum is
    <= total_quantity wins. Returns None below the first band.
    """
    for band in reversed(TIER_BANDS):
        if total_quantity >= band.min_quantity:
            return band
    return None


def price_for_quantity(total_quantity: int) -> Optional[Decimal]:
    """Unit price for a cart-wide quantity, or None when not wholesale-eligible."""
    band = band_for_quantity(total_quantity)
    return band.unit_price if band else None


def tier_for_quantity(total_quantity: int) -> Optional[PricingTier]:
    band = band_for_quantity(total_quantity)
    return band.tier if band else None


def custom_pricing_key(flavor: str, strength: str, tier: PricingTier) -> str:
    return f"{flavor}_{strength}_{tier.value}"


def apply_custom_pricing(
    base_tier_price: Decimal,
    custom_pricing: Optional[dict],
    flavor: str,
    strength: str,
    tier: PricingTier,
) -> Decimal:
    """
    Return the customer's override for (flavor, strength, tier) if one is
    set, otherwise the table price. Zero or missing overrides fall back.

    `custom_pricing` is the user's JSON map keyed "{flavor}_{strength}_{tier}".
    """
    if not custom_pricing:
        return base_tier_price

    override = custom_pricing.get(custom_pricing_key(flavor, strength, tier))
    if override is None:
        return base_tier_price

    # JSON numbers arrive as float; go through str to keep the cents exact
    override = Decimal(str(override))
    if override <= 0:
        return base_tier_price
    return override


def cart_total(items: Iterable) -> Decimal:
    """
    Sum quantity x unit_price over items, rounding once at the end.

    Items need `quantity` and `unit_price` attributes.
    """
    total = sum((Decimal(item.quantity) * Decimal(item.unit_price) for item in items), ZERO)
    return round_money(total)


# ==================== VALIDATION ====================

def validate_quantity(quantity: int) -> None:
    if quantity is None or quantity <= 0:
        raise InvalidQuantity(
            "Quantity must be a positive integer",
            details={"quantity": quantity}
        )


def minimum_quantity(is_wholesale: bool) -> int:
    if is_wholesale:
        return settings.WHOLESALE_MIN_ORDER_QUANTITY
    return settings.RETAIL_MIN_ORDER_QUANTITY


def ensure_minimum(total_quantity: int, is_wholesale: bool) -> None:
    minimum = minimum_quantity(is_wholesale)
    if total_quantity < minimum:
        raise BelowMinimumOrder(
            f"Minimum order quantity is {minimum} units",
            details={"total_quantity": total_quantity, "minimum": minimum}
        )


# ==================== PROMOTIONS ====================

def apply_promotion(
    subtotal: Decimal,
    promotion: Promotion,
    now: Optional[datetime] = None,
) -> Decimal:
    """
    Compute the discount a promotion grants on a subtotal.

    Returns the discount amount (never more than the subtotal).
    Raises PromotionNotApplicable when the promotion cannot be used.
    """
    now = now or datetime.now(timezone.utc)

    if not promotion.is_active:
        raise PromotionNotApplicable(
            f"Promotion {promotion.code} is not active",
            details={"code": promotion.code}
        )

    start_date = _as_aware(promotion.start_date)
    end_date = _as_aware(promotion.end_date)
    if now < start_date or now > end_date:
        raise PromotionNotApplicable(
            f"Promotion {promotion.code} is not valid at this time",
            details={"code": promotion.code}
        )

    if promotion.min_order_amount is not None and subtotal < promotion.min_order_amount:
        raise PromotionNotApplicable(
            f"Promotion {promotion.code} requires a minimum order of {promotion.min_order_amount}",
            details={"code": promotion.code, "min_order_amount": str(promotion.min_order_amount)}
        )

    if promotion.discount_type == DiscountType.PERCENTAGE.value:
        discount = subtotal * Decimal(promotion.discount_value) / Decimal("100")
    else:
        discount = Decimal(promotion.discount_value)

    if promotion.max_discount is not None:
        discount = min(discount, promotion.max_discount)

    return round_money(min(discount, subtotal))


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==================== CART ====================

@dataclass
class CartLine:
    product_id: int
    flavor: str
    strength: str
    quantity: int
    product_name: str = ""
    retail_price: Optional[Decimal] = None
    unit_price: Decimal = ZERO

    @property
    def key(self) -> Tuple[int, str, str]:
        return (self.product_id, self.flavor, self.strength)

    @property
    def line_total(self) -> Decimal:
        return round_money(Decimal(self.quantity) * self.unit_price)


class Cart:
    """
    Retail cart: every line is billed at its product's flat price.

    Quantity changes that would take a cart from at/above the minimum to
    below it are rejected, matching the storefront behaviour.
    """

    is_wholesale = False

    def __init__(self, custom_pricing: Optional[dict] = None):
        self.custom_pricing = custom_pricing or {}
        self._lines: Dict[Tuple[int, str, str], CartLine] = {}

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def subtotal(self) -> Decimal:
        return cart_total(self._lines.values())

    @property
    def minimum_quantity(self) -> int:
        return minimum_quantity(self.is_wholesale)

    @property
    def meets_minimum(self) -> bool:
        return self.total_quantity >= self.minimum_quantity

    def is_empty(self) -> bool:
        return not self._lines

    def add_item(
        self,
        product_id: int,
        flavor: str,
        strength: str,
        quantity: int,
        retail_price: Optional[Decimal] = None,
        product_name: str = "",
    ) -> CartLine:
        validate_quantity(quantity)

        key = (product_id, flavor, strength)
        line = self._lines.get(key)
        if line:
            line.quantity += quantity
        else:
            line = CartLine(
                product_id=product_id,
                flavor=flavor,
                strength=strength,
                quantity=quantity,
                product_name=product_name,
                retail_price=Decimal(retail_price) if retail_price is not None else None,
            )
            self._lines[key] = line

        self._reprice()
        return line

    def update_quantity(self, product_id: int, flavor: str, strength: str, quantity: int) -> CartLine:
        validate_quantity(quantity)
        line = self._get_line(product_id, flavor, strength)

        new_total = self.total_quantity - line.quantity + quantity
        self._check_reduction(new_total)

        line.quantity = quantity
        self._reprice()
        return line

    def remove_item(self, product_id: int, flavor: str, strength: str) -> None:
        line = self._get_line(product_id, flavor, strength)

        new_total = self.total_quantity - line.quantity
        self._check_reduction(new_total)

        del self._lines[line.key]
        self._reprice()

    def clear(self) -> None:
        self._lines.clear()

    def ensure_minimum(self) -> None:
        ensure_minimum(self.total_quantity, self.is_wholesale)

    def _get_line(self, product_id: int, flavor: str, strength: str) -> CartLine:
        line = self._lines.get((product_id, flavor, strength))
        if line is None:
            raise ProductNotFound(
                "Item is not in the cart",
                details={"product_id": product_id, "flavor": flavor, "strength": strength}
            )
        return line

    def _check_reduction(self, new_total: int) -> None:
        if self.meets_minimum and new_total < self.minimum_quantity:
            raise BelowMinimumOrder(
                f"Cannot reduce cart below the minimum of {self.minimum_quantity} units",
                details={"total_quantity": new_total, "minimum": self.minimum_quantity}
            )

    def _reprice(self) -> None:
        for line in self._lines.values():
            if line.retail_price is None:
                raise ProductNotFound(
                    "Retail price unknown for cart item",
                    details={"product_id": line.product_id}
                )
            line.unit_price = line.retail_price


class WholesaleCart(Cart):
    """
    Wholesale cart: the cart-wide total quantity selects one tier and all
    lines are re-priced to it on every change. Below the minimum, lines
    carry provisional TIER_1 prices.
    """

    is_wholesale = True

    @property
    def current_band(self) -> TierBand:
        return band_for_quantity(self.total_quantity) or BANDS_BY_TIER[PricingTier.TIER_1]

    @property
    def current_tier(self) -> PricingTier:
        return self.current_band.tier

    def _reprice(self) -> None:
        band = self.current_band
        for line in self._lines.values():
            line.unit_price = apply_custom_pricing(
                band.unit_price, self.custom_pricing, line.flavor, line.strength, band.tier
            )
        logger.debug("Cart re-priced to %s (%d units)", band.tier.value, self.total_quantity)


def quote(cart: Cart) -> dict:
    """Summary used by the pricing endpoint."""
    tier = cart.current_tier.value if isinstance(cart, WholesaleCart) else None
    return {
        "is_wholesale": cart.is_wholesale,
        "total_quantity": cart.total_quantity,
        "tier": tier,
        "meets_minimum": cart.meets_minimum,
        "minimum_quantity": cart.minimum_quantity,
        "lines": cart.lines,
        "subtotal": cart.subtotal,
    }
