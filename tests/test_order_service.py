"""Tests for checkout and the order lifecycle."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.core.exceptions import (
    BelowMinimumOrder,
    InvalidPaymentMethod,
    InvalidStatusValue,
    InvalidTransition,
    PaymentAmountMismatch,
    PermissionDenied,
    ProductNotFound,
    PromotionNotApplicable,
    SelfReferralNotAllowed,
    ValidationError,
    WholesaleAccountNotApproved,
)
from app.models.commission import CommissionTransaction
from app.models.loan import LoanStatus, WholesaleLoan
from app.models.order import ConsignmentStatus, Order, OrderStatus, PaymentStatus
from app.models.promotion import DiscountType, Promotion
from app.models.user import UserRole, WholesaleStatus
from app.services.order_service import OrderService
from app.services.pricing_engine import Cart, WholesaleCart

from conftest import actor_for


def _wholesale_cart(product, quantity) -> WholesaleCart:
    cart = WholesaleCart()
    cart.add_item(product.id, product.flavor, product.strength, quantity)
    return cart


def _retail_cart(product, quantity) -> Cart:
    cart = Cart()
    cart.add_item(product.id, product.flavor, product.strength, quantity, retail_price=product.price)
    return cart


async def _count(db_session, model) -> int:
    return (await db_session.execute(select(func.count(model.id)))).scalar()


class TestRetailCheckout:
    async def test_guest_checkout(self, db_session, product):
        order = await OrderService(db_session).create_order(_retail_cart(product, 5), None, "CARD")

        assert order.user_id is None
        assert order.is_wholesale is False
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.subtotal == Decimal("50.00")
        assert order.shipping_cost == Decimal("5.00")
        assert order.total == Decimal("55.00")
        assert len(order.items) == 1
        assert order.items[0].product_name == product.name
        assert [h.to_status for h in order.status_history] == ["PENDING"]

    async def test_catalog_price_wins_over_client_price(self, db_session, product, retail_user):
        cart = Cart()
        cart.add_item(product.id, product.flavor, product.strength, 5, retail_price=Decimal("0.01"))
        order = await OrderService(db_session).create_order(cart, retail_user, "CARD")
        assert order.items[0].unit_price == Decimal("10.00")

    async def test_retail_minimum(self, db_session, product, retail_user):
        with pytest.raises(BelowMinimumOrder):
            await OrderService(db_session).create_order(_retail_cart(product, 4), retail_user, "CARD")

    async def test_wholesale_method_rejected_for_retail(self, db_session, product, retail_user):
        with pytest.raises(InvalidPaymentMethod):
            await OrderService(db_session).create_order(_retail_cart(product, 5), retail_user, "INVOICE")

    async def test_unknown_payment_method(self, db_session, product, retail_user):
        with pytest.raises(InvalidPaymentMethod):
            await OrderService(db_session).create_order(_retail_cart(product, 5), retail_user, "BARTER")

    async def test_unknown_product(self, db_session, retail_user):
        cart = Cart()
        cart.add_item(999, "Mint", "6mg", 5, retail_price=Decimal("1.00"))
        with pytest.raises(ProductNotFound):
            await OrderService(db_session).create_order(cart, retail_user, "CARD")

    async def test_promotion_discounts_subtotal(self, db_session, product, retail_user):
        now = datetime.now(timezone.utc)
        db_session.add(Promotion(
            code="SAVE10",
            discount_type=DiscountType.PERCENTAGE.value,
            discount_value=Decimal("10"),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
            is_active=True,
        ))
        await db_session.commit()

        order = await OrderService(db_session).create_order(
            _retail_cart(product, 10), retail_user, "CARD", promo_code="save10"
        )
        assert order.discount_amount == Decimal("10.00")
        assert order.subtotal == Decimal("90.00")
        assert order.total == Decimal("95.00")
        assert order.promo_code == "SAVE10"

    async def test_referral_at_checkout_is_atomic_with_order(self, db_session, product, retail_user, make_user):
        referrer = await make_user(UserRole.RETAIL, referral_code="ABC123")
        order = await OrderService(db_session).create_order(
            _retail_cart(product, 10), retail_user, "CARD", referral_code="ABC123"
        )
        assert order.referrer_id == referrer.id
        assert order.commission_amount == Decimal("5.00")
        assert await _count(db_session, CommissionTransaction) == 1

    async def test_own_code_at_checkout_writes_nothing(self, db_session, product, make_user):
        buyer = await make_user(UserRole.RETAIL, referral_code="MINE01")
        with pytest.raises(SelfReferralNotAllowed):
            await OrderService(db_session).create_order(
                _retail_cart(product, 5), buyer, "CARD", referral_code="MINE01"
            )
        assert await _count(db_session, Order) == 0
        assert await _count(db_session, CommissionTransaction) == 0

    async def test_consignment_is_wholesale_only(self, db_session, product, retail_user):
        with pytest.raises(ValidationError):
            await OrderService(db_session).create_order(
                _retail_cart(product, 5), retail_user, "CARD", is_consignment=True
            )


class TestWholesaleCheckout:
    async def test_hundred_units_at_tier_one(self, db_session, product, wholesaler):
        order = await OrderService(db_session).create_order(_wholesale_cart(product, 100), wholesaler, "INVOICE")
        assert order.is_wholesale is True
        assert order.items[0].unit_price == Decimal("8.00")
        assert order.subtotal == Decimal("800.00")
        assert order.shipping_cost == Decimal("0.00")
        assert order.total == Decimal("800.00")

    async def test_ninety_nine_units_rejected(self, db_session, product, wholesaler):
        with pytest.raises(BelowMinimumOrder):
            await OrderService(db_session).create_order(_wholesale_cart(product, 99), wholesaler, "INVOICE")
        assert await _count(db_session, Order) == 0

    async def test_custom_pricing_from_account(self, db_session, product, make_user):
        buyer = await make_user(
            UserRole.WHOLESALE,
            custom_pricing={f"{product.flavor}_{product.strength}_TIER_2": "7.00"},
        )
        order = await OrderService(db_session).create_order(_wholesale_cart(product, 300), buyer, "INVOICE")
        assert order.items[0].unit_price == Decimal("7.00")
        assert order.subtotal == Decimal("2100.00")

    async def test_relabelled_product_cannot_take_another_flavors_price(self, db_session, product, make_product, make_user):
        berry = await make_product(name="Wild Berry 6mg", flavor="Berry")
        buyer = await make_user(
            UserRole.WHOLESALE,
            custom_pricing={f"{product.flavor}_{product.strength}_TIER_1": "1.00"},
        )
        cart = WholesaleCart(custom_pricing=buyer.custom_pricing)
        cart.add_item(berry.id, "Mint", "6mg", 100)

        with pytest.raises(ValidationError):
            await OrderService(db_session).create_order(cart, buyer, "INVOICE")
        assert await _count(db_session, Order) == 0

    async def test_line_labels_come_from_catalog(self, db_session, make_product, wholesaler):
        berry = await make_product(name="Wild Berry 6mg", flavor="Berry")
        cart = WholesaleCart()
        cart.add_item(berry.id, " berry ", "6MG", 100)

        order = await OrderService(db_session).create_order(cart, wholesaler, "INVOICE")
        assert order.items[0].flavor == "Berry"
        assert order.items[0].strength == "6mg"
        assert order.items[0].unit_price == Decimal("8.00")
        assert order.subtotal == Decimal("800.00")

    @pytest.mark.parametrize("status", [WholesaleStatus.PENDING, WholesaleStatus.BLOCKED, WholesaleStatus.REJECTED])
    async def test_unapproved_accounts_rejected(self, db_session, product, make_user, status):
        buyer = await make_user(UserRole.WHOLESALE, wholesale_status=status.value)
        with pytest.raises(WholesaleAccountNotApproved):
            await OrderService(db_session).create_order(_wholesale_cart(product, 100), buyer, "INVOICE")

    async def test_guests_cannot_buy_wholesale(self, db_session, product):
        with pytest.raises(PermissionDenied):
            await OrderService(db_session).create_order(_wholesale_cart(product, 100), None, "INVOICE")

    async def test_retail_method_rejected_for_wholesale(self, db_session, product, wholesaler):
        with pytest.raises(InvalidPaymentMethod):
            await OrderService(db_session).create_order(_wholesale_cart(product, 100), wholesaler, "CARD")

    async def test_no_promotions_on_wholesale(self, db_session, product, wholesaler):
        with pytest.raises(PromotionNotApplicable):
            await OrderService(db_session).create_order(
                _wholesale_cart(product, 100), wholesaler, "INVOICE", promo_code="SAVE10"
            )

    async def test_loan_payment_opens_pending_loan(self, db_session, product, wholesaler):
        order = await OrderService(db_session).create_order(_wholesale_cart(product, 250), wholesaler, "LOAN")
        loan = await db_session.get(WholesaleLoan, order.wholesale_loan_id)
        assert loan.status == LoanStatus.PENDING.value
        assert loan.amount == order.total == Decimal("1875.00")
        assert loan.wholesaler_id == wholesaler.id

    async def test_wholesale_referral_commission(self, db_session, make_product, wholesaler, make_user):
        product = await make_product()
        await make_user(UserRole.RETAIL, referral_code="ABC123")
        order = await OrderService(db_session).create_order(
            _wholesale_cart(product, 1000), wholesaler, "INVOICE", referral_code="ABC123"
        )
        assert order.subtotal == Decimal("6500.00")
        assert order.commission_amount == Decimal("325.00")
        assert order.commission_type == "WHOLESALE_REFERRAL"


class TestPayment:
    async def test_verify_marks_paid(self, db_session, make_order, admin):
        order = await make_order()
        order = await OrderService(db_session).verify_payment(order.id, actor_for(admin))
        assert order.status == OrderStatus.PAID.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.paid_at is not None
        assert order.status_history[-1].to_status == "PAID"

    async def test_verify_requires_admin(self, db_session, make_order, retail_user):
        order = await make_order(user_id=retail_user.id)
        with pytest.raises(PermissionDenied):
            await OrderService(db_session).verify_payment(order.id, actor_for(retail_user))

    async def test_processor_success_needs_exact_total(self, db_session, make_order, admin):
        order = await make_order(subtotal=Decimal("50.00"), shipping_cost=Decimal("5.00"))
        service = OrderService(db_session)
        with pytest.raises(PaymentAmountMismatch):
            await service.confirm_payment(order.id, "SUCCEEDED", Decimal("50.00"), actor_for(admin))

        order = await service.confirm_payment(order.id, "SUCCEEDED", Decimal("55.00"), actor_for(admin))
        assert order.status == OrderStatus.PAID.value

    async def test_processor_pending_changes_nothing(self, db_session, make_order, admin):
        order = await make_order()
        order = await OrderService(db_session).confirm_payment(order.id, "PENDING", Decimal("0"), actor_for(admin))
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value

    async def test_processor_failure_recorded(self, db_session, make_order, admin):
        order = await make_order()
        order = await OrderService(db_session).confirm_payment(order.id, "FAILED", Decimal("0"), actor_for(admin))
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.FAILED.value

    async def test_paid_order_rejects_second_payment(self, db_session, make_order, admin):
        order = await make_order(status=OrderStatus.PAID.value)
        with pytest.raises(InvalidTransition):
            await OrderService(db_session).confirm_payment(order.id, "SUCCEEDED", order.total, actor_for(admin))

    async def test_unknown_outcome(self, db_session, make_order, admin):
        order = await make_order()
        with pytest.raises(InvalidStatusValue):
            await OrderService(db_session).confirm_payment(order.id, "MAYBE", order.total, actor_for(admin))


class TestLifecycle:
    async def test_admin_drives_order_to_delivery(self, db_session, make_order, admin):
        order = await make_order(status=OrderStatus.PAID.value)
        service = OrderService(db_session)
        for status in ("processing", "SHIPPED", "DELIVERED"):
            order = await service.update_status(order.id, status, actor_for(admin))
        assert order.status == OrderStatus.DELIVERED.value
        assert order.delivered_at is not None
        assert [h.to_status for h in order.status_history] == ["PROCESSING", "SHIPPED", "DELIVERED"]

    async def test_delivered_is_terminal(self, db_session, make_order, admin):
        order = await make_order(status=OrderStatus.DELIVERED.value)
        with pytest.raises(InvalidTransition):
            await OrderService(db_session).update_status(order.id, "PROCESSING", actor_for(admin))

    async def test_paid_only_through_payment(self, db_session, make_order, admin):
        order = await make_order()
        with pytest.raises(InvalidTransition):
            await OrderService(db_session).update_status(order.id, "PAID", actor_for(admin))

    async def test_buyers_cannot_change_status(self, db_session, make_order, retail_user):
        order = await make_order(user_id=retail_user.id, status=OrderStatus.PAID.value)
        with pytest.raises(PermissionDenied):
            await OrderService(db_session).update_status(order.id, "CANCELLED", actor_for(retail_user))

    async def test_cancel_paid_order(self, db_session, make_order, admin):
        order = await make_order(status=OrderStatus.PAID.value)
        order = await OrderService(db_session).update_status(order.id, "CANCELLED", actor_for(admin), notes="Out of stock")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancelled_at is not None
        assert order.status_history[-1].notes == "Out of stock"


class TestConsignment:
    async def test_consignment_approval_gates_payment(self, db_session, product, wholesaler, admin):
        service = OrderService(db_session)
        order = await service.create_order(
            _wholesale_cart(product, 100), wholesaler, "INVOICE", is_consignment=True
        )
        assert order.consignment_status == ConsignmentStatus.PENDING_APPROVAL.value

        with pytest.raises(InvalidTransition):
            await service.verify_payment(order.id, actor_for(admin))

        order = await service.set_consignment_status(order.id, "APPROVED", actor_for(admin))
        assert order.status == OrderStatus.PENDING.value

        order = await service.verify_payment(order.id, actor_for(admin))
        assert order.status == OrderStatus.PAID.value


class TestAssignment:
    async def test_assign_and_list(self, db_session, make_order, distributor, admin):
        order = await make_order()
        service = OrderService(db_session)

        unassigned = await service.list_unassigned_orders(actor_for(admin))
        assert [o.id for o in unassigned] == [order.id]

        await service.assign_to_distributor(order.id, distributor.id, actor_for(admin))
        assert await service.list_unassigned_orders(actor_for(admin)) == []

        mine = await service.list_distributor_orders(actor_for(distributor))
        assert [o.id for o in mine] == [order.id]

        fetched = await service.get_order(order.id, actor_for(distributor))
        assert fetched.distributor_id == distributor.id

    async def test_only_distributors_can_be_assigned(self, db_session, make_order, retail_user, admin):
        order = await make_order()
        with pytest.raises(ValidationError):
            await OrderService(db_session).assign_to_distributor(order.id, retail_user.id, actor_for(admin))

    async def test_shipped_orders_cannot_be_reassigned(self, db_session, make_order, distributor, admin):
        order = await make_order(status=OrderStatus.SHIPPED.value)
        with pytest.raises(InvalidTransition):
            await OrderService(db_session).assign_to_distributor(order.id, distributor.id, actor_for(admin))


class TestQueries:
    async def test_buyers_see_only_their_orders(self, db_session, make_order, retail_user, make_user):
        other = await make_user(UserRole.RETAIL)
        order = await make_order(user_id=other.id)
        service = OrderService(db_session)
        with pytest.raises(PermissionDenied):
            await service.get_order(order.id, actor_for(retail_user))
        assert await service.list_orders_for_user(retail_user.id) == []

    async def test_admin_listing_filters(self, db_session, make_order, admin):
        await make_order()
        await make_order(status=OrderStatus.PAID.value, is_wholesale=True, payment_method="INVOICE")
        service = OrderService(db_session)

        orders, total = await service.list_orders(actor_for(admin))
        assert total == 2

        orders, total = await service.list_orders(actor_for(admin), status=OrderStatus.PAID)
        assert total == 1 and orders[0].is_wholesale

        orders, total = await service.list_orders(actor_for(admin), is_wholesale=False)
        assert total == 1 and orders[0].status == OrderStatus.PENDING.value

    async def test_apply_referral_after_checkout(self, db_session, make_order, retail_user, make_user):
        await make_user(UserRole.RETAIL, referral_code="LATE01")
        order = await make_order(user_id=retail_user.id, subtotal=Decimal("40.00"))
        txn = await OrderService(db_session).apply_referral(order.id, "LATE01", actor_for(retail_user))
        assert txn.amount == Decimal("2.00")
