"""Tests for tier pricing, carts and promotions."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import BelowMinimumOrder, InvalidQuantity, PromotionNotApplicable
from app.models.promotion import DiscountType, Promotion
from app.services.pricing_engine import (
    TIER_BANDS,
    Cart,
    PricingTier,
    WholesaleCart,
    apply_custom_pricing,
    apply_promotion,
    band_for_quantity,
    cart_total,
    ensure_minimum,
    price_for_quantity,
    quote,
    round_money,
    tier_for_quantity,
    validate_quantity,
)


class TestTierTable:
    def test_bands_are_contiguous(self):
        for lower, upper in zip(TIER_BANDS, TIER_BANDS[1:]):
            assert lower.max_quantity + 1 == upper.min_quantity
        assert TIER_BANDS[-1].max_quantity is None

    def test_price_never_increases_with_quantity(self):
        quantities = [100, 150, 249, 250, 499, 500, 999, 1000, 4999, 5000, 9999, 10000, 24999, 25000, 100000]
        prices = [price_for_quantity(q) for q in quantities]
        assert prices == sorted(prices, reverse=True)

    @pytest.mark.parametrize(
        "quantity,expected",
        [
            (100, Decimal("8.00")),
            (249, Decimal("8.00")),
            (250, Decimal("7.50")),
            (500, Decimal("7.00")),
            (1000, Decimal("6.50")),
            (5000, Decimal("6.00")),
            (10000, Decimal("5.50")),
            (24999, Decimal("5.50")),
            (25000, Decimal("5.00")),
        ],
    )
    def test_band_boundaries_are_inclusive(self, quantity, expected):
        assert price_for_quantity(quantity) == expected

    def test_below_first_band_has_no_tier(self):
        assert band_for_quantity(99) is None
        assert tier_for_quantity(99) is None
        assert tier_for_quantity(100) == PricingTier.TIER_1


class TestCustomPricing:
    def test_override_replaces_tier_price(self):
        pricing = {"Mint_6mg_TIER_2": "7.10"}
        price = apply_custom_pricing(Decimal("7.50"), pricing, "Mint", "6mg", PricingTier.TIER_2)
        assert price == Decimal("7.10")

    def test_float_override_keeps_cents(self):
        pricing = {"Mint_6mg_TIER_1": 7.35}
        price = apply_custom_pricing(Decimal("8.00"), pricing, "Mint", "6mg", PricingTier.TIER_1)
        assert price == Decimal("7.35")

    def test_missing_or_zero_override_falls_back(self):
        pricing = {"Mint_6mg_TIER_1": 0, "Citrus_6mg_TIER_2": "6.00"}
        assert apply_custom_pricing(Decimal("8.00"), pricing, "Mint", "6mg", PricingTier.TIER_1) == Decimal("8.00")
        assert apply_custom_pricing(Decimal("8.00"), pricing, "Citrus", "6mg", PricingTier.TIER_1) == Decimal("8.00")
        assert apply_custom_pricing(Decimal("8.00"), None, "Mint", "6mg", PricingTier.TIER_1) == Decimal("8.00")


class TestMinimums:
    def test_wholesale_minimum(self):
        with pytest.raises(BelowMinimumOrder):
            ensure_minimum(99, is_wholesale=True)
        ensure_minimum(100, is_wholesale=True)

    def test_retail_minimum(self):
        with pytest.raises(BelowMinimumOrder):
            ensure_minimum(4, is_wholesale=False)
        ensure_minimum(5, is_wholesale=False)

    def test_non_positive_quantity_rejected(self):
        cart = Cart()
        with pytest.raises(InvalidQuantity):
            cart.add_item(1, "Mint", "6mg", 0, retail_price=Decimal("10.00"))

    @pytest.mark.parametrize("quantity", [0, -5, None])
    def test_validate_quantity_rejects_non_positive(self, quantity):
        with pytest.raises(InvalidQuantity):
            validate_quantity(quantity)


class TestWholesaleCart:
    def test_hundred_units_at_first_tier(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 100)
        cart.ensure_minimum()
        assert cart.current_tier == PricingTier.TIER_1
        assert cart.lines[0].unit_price == Decimal("8.00")
        assert cart.subtotal == Decimal("800.00")

    def test_ninety_nine_units_below_minimum(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 99)
        assert not cart.meets_minimum
        with pytest.raises(BelowMinimumOrder):
            cart.ensure_minimum()

    def test_adding_lines_reprices_every_line(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 200)
        cart.add_item(2, "Citrus", "6mg", 100)
        assert cart.current_tier == PricingTier.TIER_2
        assert all(line.unit_price == Decimal("7.50") for line in cart.lines)

        cart.add_item(3, "Berry", "12mg", 700)
        assert cart.total_quantity == 1000
        assert cart.current_tier == PricingTier.TIER_4
        assert all(line.unit_price == Decimal("6.50") for line in cart.lines)
        assert cart.subtotal == Decimal("6500.00")

    def test_same_variant_merges_into_one_line(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 60)
        cart.add_item(1, "Mint", "6mg", 60)
        cart.add_item(1, "Mint", "12mg", 10)
        assert len(cart.lines) == 2
        assert cart.total_quantity == 130

    def test_custom_pricing_applies_per_line(self):
        cart = WholesaleCart(custom_pricing={"Mint_6mg_TIER_2": "7.00"})
        cart.add_item(1, "Mint", "6mg", 150)
        cart.add_item(2, "Citrus", "6mg", 150)
        prices = {line.flavor: line.unit_price for line in cart.lines}
        assert prices == {"Mint": Decimal("7.00"), "Citrus": Decimal("7.50")}
        assert cart.subtotal == Decimal("2175.00")

    def test_reduction_below_minimum_rejected(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 100)
        with pytest.raises(BelowMinimumOrder):
            cart.update_quantity(1, "Mint", "6mg", 99)
        assert cart.total_quantity == 100

    def test_reduction_between_tiers_reprices(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 300)
        cart.update_quantity(1, "Mint", "6mg", 120)
        assert cart.lines[0].unit_price == Decimal("8.00")

    def test_removing_line_below_minimum_rejected(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 60)
        cart.add_item(2, "Citrus", "6mg", 60)
        with pytest.raises(BelowMinimumOrder):
            cart.remove_item(2, "Citrus", "6mg")

    def test_clear_is_always_allowed(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 300)
        cart.clear()
        assert cart.is_empty()

    def test_quote_summary(self):
        cart = WholesaleCart()
        cart.add_item(1, "Mint", "6mg", 250)
        summary = quote(cart)
        assert summary["is_wholesale"] is True
        assert summary["tier"] == "TIER_2"
        assert summary["subtotal"] == Decimal("1875.00")


class TestRetailCart:
    def test_flat_price_per_product(self):
        cart = Cart()
        cart.add_item(1, "Mint", "6mg", 3, retail_price=Decimal("4.99"))
        cart.add_item(2, "Citrus", "6mg", 2, retail_price=Decimal("5.49"))
        assert cart.subtotal == Decimal("25.95")
        assert cart.meets_minimum
        assert quote(cart)["tier"] is None

    def test_cart_total_rounds_once(self):
        class Line:
            def __init__(self, quantity, unit_price):
                self.quantity = quantity
                self.unit_price = unit_price

        assert cart_total([Line(3, Decimal("0.335")), Line(1, Decimal("0.001"))]) == Decimal("1.01")
        assert round_money(Decimal("2.005")) == Decimal("2.01")


def _promotion(**fields) -> Promotion:
    now = datetime.now(timezone.utc)
    defaults = dict(
        code="SAVE10",
        discount_type=DiscountType.PERCENTAGE.value,
        discount_value=Decimal("10"),
        min_order_amount=None,
        max_discount=None,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1),
        is_active=True,
    )
    defaults.update(fields)
    return Promotion(**defaults)


class TestPromotions:
    def test_percentage_discount(self):
        assert apply_promotion(Decimal("50.00"), _promotion()) == Decimal("5.00")

    def test_percentage_capped_by_max_discount(self):
        promo = _promotion(discount_value=Decimal("50"), max_discount=Decimal("10.00"))
        assert apply_promotion(Decimal("100.00"), promo) == Decimal("10.00")

    def test_fixed_discount_never_exceeds_subtotal(self):
        promo = _promotion(discount_type=DiscountType.FIXED.value, discount_value=Decimal("30.00"))
        assert apply_promotion(Decimal("20.00"), promo) == Decimal("20.00")

    def test_inactive_or_expired_rejected(self):
        with pytest.raises(PromotionNotApplicable):
            apply_promotion(Decimal("50.00"), _promotion(is_active=False))

        past = datetime.now(timezone.utc) - timedelta(days=10)
        expired = _promotion(start_date=past - timedelta(days=5), end_date=past)
        with pytest.raises(PromotionNotApplicable):
            apply_promotion(Decimal("50.00"), expired)

    def test_minimum_order_amount(self):
        promo = _promotion(min_order_amount=Decimal("100.00"))
        with pytest.raises(PromotionNotApplicable):
            apply_promotion(Decimal("99.99"), promo)
        assert apply_promotion(Decimal("100.00"), promo) == Decimal("10.00")

    def test_naive_dates_treated_as_utc(self):
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        promo = _promotion(start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1))
        assert apply_promotion(Decimal("10.00"), promo) == Decimal("1.00")
