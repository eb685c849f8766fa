"""
Order Service

Checkout and the order lifecycle. Every operation here is a single unit of
work: the order row is locked, the status change, its side effects and the
status history row are written, and the session is committed once.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.enum_utils import enum_values, to_enum
from app.core.exceptions import (
    DomainError,
    InvalidPaymentMethod,
    InvalidStatusValue,
    InvalidTransition,
    OrderNotFound,
    PaymentAmountMismatch,
    PermissionDenied,
    ProductNotFound,
    PromotionNotApplicable,
    PromotionNotFound,
    SelfReferralNotAllowed,
    UserNotFound,
    ValidationError,
    WholesaleAccountNotApproved,
)
from app.core.permissions import Actor, Operation, ensure_allowed
from app.models.commission import CommissionTransaction
from app.models.order import (
    ConsignmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
    PaymentStatus,
    RETAIL_PAYMENT_METHODS,
    WHOLESALE_PAYMENT_METHODS,
)
from app.models.product import Product
from app.models.promotion import Promotion
from app.models.user import User, UserRole
from app.services import order_state_machine as state_machine
from app.services.commission_service import CommissionService
from app.services.distributor_service import DistributorService
from app.services.loan_service import LoanService
from app.services.pricing_engine import (
    Cart,
    WholesaleCart,
    ZERO,
    apply_promotion,
    round_money,
    validate_quantity,
)

logger = logging.getLogger(__name__)


class PaymentOutcome(str, Enum):
    """Result reported by the payment processor."""
    SUCCEEDED = "SUCCEEDED"
    PENDING = "PENDING"
    FAILED = "FAILED"


class OrderService:
    """Service for checkout and order lifecycle operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CHECKOUT ====================

    async def create_order(
        self,
        cart: Cart,
        user: Optional[User],
        payment_method,
        referral_code: Optional[str] = None,
        promo_code: Optional[str] = None,
        is_consignment: bool = False,
    ) -> Order:
        """
        Place an order from a cart.

        The cart is re-priced from the catalog and the buyer's stored custom
        pricing before anything is written. Guests may only check out retail.
        """
        method = to_enum(payment_method, PaymentMethod)
        if method is None:
            raise InvalidPaymentMethod(
                f"Unknown payment method: {payment_method}",
                details={"payment_method": str(payment_method)}
            )

        is_wholesale = self._check_buyer(cart, user)

        allowed_methods = WHOLESALE_PAYMENT_METHODS if is_wholesale else RETAIL_PAYMENT_METHODS
        if method not in allowed_methods:
            raise InvalidPaymentMethod(
                f"{method.value} is not accepted for {'wholesale' if is_wholesale else 'retail'} orders",
                details={"payment_method": method.value, "allowed": sorted(m.value for m in allowed_methods)}
            )

        if is_consignment and not is_wholesale:
            raise ValidationError("Consignment is only available for wholesale orders")

        if cart.is_empty():
            raise ValidationError("Cart is empty")

        priced = await self._reprice_cart(cart, user)
        priced.ensure_minimum()

        items_total = priced.subtotal
        discount = ZERO
        promotion = None
        if promo_code:
            if is_wholesale:
                raise PromotionNotApplicable(
                    "Promotions do not apply to wholesale orders",
                    details={"code": promo_code}
                )
            promotion = await self._get_promotion(promo_code)
            discount = apply_promotion(items_total, promotion)

        referrer = None
        if referral_code:
            referrer = await CommissionService(self.db).validate_referral_code(referral_code)
            if referrer is not None and user is not None and referrer.id == user.id:
                raise SelfReferralNotAllowed(
                    "You cannot use your own referral code",
                    details={"referral_code": referral_code}
                )

        subtotal = round_money(items_total - discount)
        shipping = settings.WHOLESALE_SHIPPING_COST if is_wholesale else settings.RETAIL_SHIPPING_COST
        shipping = round_money(shipping)

        try:
            order = Order(
                user_id=user.id if user else None,
                is_wholesale=is_wholesale,
                status=OrderStatus.PENDING.value,
                payment_method=method.value,
                payment_status=PaymentStatus.PENDING.value,
                subtotal=subtotal,
                discount_amount=discount,
                shipping_cost=shipping,
                total=round_money(subtotal + shipping),
                promo_code=promotion.code if promotion else None,
                is_consignment=is_consignment,
                consignment_status=ConsignmentStatus.PENDING_APPROVAL.value if is_consignment else None,
                items=[
                    OrderItem(
                        product_id=line.product_id,
                        product_name=line.product_name,
                        flavor=line.flavor,
                        strength=line.strength,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        line_total=line.line_total,
                    )
                    for line in priced.lines
                ],
                status_history=[
                    OrderStatusHistory(
                        from_status=None,
                        to_status=OrderStatus.PENDING.value,
                        changed_by=user.id if user else None,
                        notes="Order placed",
                    )
                ],
            )
            self.db.add(order)
            await self.db.flush()

            if referrer is not None:
                await CommissionService(self.db).attribute_referral(order, referral_code)

            if method == PaymentMethod.LOAN:
                loan = await LoanService(self.db).build_loan(user.id, order.total)
                order.wholesale_loan_id = loan.id

            await self.db.commit()
        except DomainError:
            await self.db.rollback()
            raise

        logger.info(
            f"Order {order.id} created: {'wholesale' if is_wholesale else 'retail'}, "
            f"{priced.total_quantity} units, total {order.total}, method {method.value}"
        )
        return order

    def _check_buyer(self, cart: Cart, user: Optional[User]) -> bool:
        """Validate the buyer against the cart type. Returns is_wholesale."""
        if user is None:
            if cart.is_wholesale:
                raise PermissionDenied("Wholesale checkout requires a wholesale account")
            return False

        if cart.is_wholesale != (user.role == UserRole.WHOLESALE.value):
            raise ValidationError(
                "Wholesale carts are for wholesale accounts only, and vice versa",
                details={"role": user.role, "is_wholesale_cart": cart.is_wholesale}
            )

        if cart.is_wholesale and not user.is_approved_wholesaler:
            logger.warning(f"Wholesale checkout rejected for user {user.id} ({user.wholesale_status})")
            raise WholesaleAccountNotApproved(
                "Your wholesale account is not approved",
                details={"wholesale_status": user.wholesale_status}
            )
        return cart.is_wholesale

    async def _reprice_cart(self, cart: Cart, user: Optional[User]) -> Cart:
        """Rebuild the cart from catalog data so client-side prices are never trusted."""
        return await self.build_cart(cart.lines, user, is_wholesale=cart.is_wholesale)

    async def build_cart(
        self,
        items,
        user: Optional[User],
        is_wholesale: Optional[bool] = None,
    ) -> Cart:
        """
        Price cart lines (anything with product_id, flavor, strength and
        quantity) from the catalog. The cart kind follows the buyer's
        account unless given.
        """
        if is_wholesale is None:
            is_wholesale = user is not None and user.role == UserRole.WHOLESALE.value

        items = list(items)
        product_ids = {line.product_id for line in items}
        result = await self.db.execute(
            select(Product).where(Product.id.in_(product_ids), Product.is_active.is_(True))
        )
        products = {p.id: p for p in result.scalars().all()}

        if is_wholesale:
            priced: Cart = WholesaleCart(custom_pricing=user.custom_pricing if user else None)
        else:
            priced = Cart()

        for line in items:
            validate_quantity(line.quantity)
            product = products.get(line.product_id)
            if not product:
                raise ProductNotFound(
                    f"Product {line.product_id} not found",
                    details={"product_id": line.product_id}
                )
            # Custom pricing is keyed by the catalog's flavor and strength
            for field in ("flavor", "strength"):
                sent = getattr(line, field, None)
                if sent and sent.strip().lower() != getattr(product, field).lower():
                    raise ValidationError(
                        f"Product {product.id} is {product.flavor} {product.strength}, not {sent}",
                        details={"product_id": product.id, field: sent}
                    )
            priced.add_item(
                product_id=product.id,
                flavor=product.flavor,
                strength=product.strength,
                quantity=line.quantity,
                retail_price=product.price,
                product_name=product.name,
            )
        return priced

    async def _get_promotion(self, code: str) -> Promotion:
        result = await self.db.execute(
            select(Promotion).where(Promotion.code == code.strip().upper())
        )
        promotion = result.scalar_one_or_none()
        if not promotion:
            raise PromotionNotFound(f"Promotion {code} not found", details={"code": code})
        return promotion

    # ==================== PAYMENT ====================

    async def verify_payment(self, order_id: int, actor: Actor, notes: Optional[str] = None) -> Order:
        """Admin confirms payment was received: PENDING -> PAID."""
        ensure_allowed(Operation.VERIFY_PAYMENT, actor)

        order = await self.get_order_for_update(order_id)
        self._mark_paid(order, actor, notes or "Payment verified")
        await self.db.commit()

        logger.info(f"Order {order_id} payment verified by {actor.id}")
        return order

    async def confirm_payment(
        self,
        order_id: int,
        outcome,
        amount: Decimal,
        actor: Actor,
    ) -> Order:
        """
        Apply a payment processor result to a PENDING order.

        SUCCEEDED with the exact order total marks it PAID, PENDING changes
        nothing, FAILED records the failure and leaves the order PENDING.
        """
        ensure_allowed(Operation.CONFIRM_PAYMENT, actor)

        result = to_enum(outcome, PaymentOutcome)
        if result is None:
            raise InvalidStatusValue(f"Unknown payment outcome: {outcome}", details={"outcome": str(outcome), "allowed": enum_values(PaymentOutcome)})

        order = await self.get_order_for_update(order_id)

        if order.status != OrderStatus.PENDING.value:
            raise InvalidTransition(
                f"Order {order_id} is {order.status}; only PENDING orders accept payment results",
                details={"order_id": order_id, "status": order.status}
            )

        if result == PaymentOutcome.PENDING:
            return order

        if result == PaymentOutcome.FAILED:
            order.payment_status = PaymentStatus.FAILED.value
            self._add_history(order, order.status, order.status, actor, "Payment failed")
            await self.db.commit()
            logger.warning(f"Payment failed for order {order_id}")
            return order

        paid = round_money(Decimal(amount)) if amount is not None else None
        if paid != order.total:
            raise PaymentAmountMismatch(
                f"Payment of {paid} does not match order total {order.total}",
                details={"order_id": order_id, "amount": str(paid), "total": str(order.total)}
            )

        self._mark_paid(order, actor, "Payment confirmed by processor")
        await self.db.commit()

        logger.info(f"Order {order_id} paid ({paid})")
        return order

    def _mark_paid(self, order: Order, actor: Actor, notes: str) -> None:
        previous = state_machine.transition_order(order, OrderStatus.PAID.value)
        order.payment_status = PaymentStatus.PAID.value
        order.paid_at = datetime.now(timezone.utc)
        self._add_history(order, previous, order.status, actor, notes)

    # ==================== LIFECYCLE ====================

    async def update_status(
        self,
        order_id: int,
        new_status,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Move an order along fulfilment or cancel it.

        Distributors may only update orders assigned to them. Delivering an
        assigned order credits the distributor's commission.
        """
        ensure_allowed(Operation.UPDATE_ORDER_STATUS, actor)

        status = to_enum(new_status, OrderStatus)
        if status is None:
            raise InvalidStatusValue(f"Unknown order status: {new_status}", details={"status": str(new_status), "allowed": enum_values(OrderStatus)})

        order = await self.get_order_for_update(order_id)

        if not actor.can(Operation.MANAGE_ANY_ORDER) and order.distributor_id != actor.id:
            raise PermissionDenied(
                "This order is not assigned to you",
                details={"order_id": order_id}
            )

        if status == OrderStatus.PAID:
            raise InvalidTransition(
                "Orders become PAID through payment verification",
                details={"order_id": order_id, "from": order.status, "to": status.value}
            )

        try:
            previous = state_machine.transition_order(order, status.value)
        except InvalidTransition:
            logger.warning(f"Rejected order {order_id} transition {order.status} -> {status.value}")
            raise

        if status == OrderStatus.DELIVERED and order.distributor_id is not None:
            await DistributorService(self.db).record_delivery_commission(order)

        self._add_history(order, previous, order.status, actor, notes)
        await self.db.commit()

        logger.info(f"Order {order_id} status {previous} -> {order.status} by {actor.role.value} {actor.id}")
        return order

    async def set_consignment_status(self, order_id: int, consignment_status, actor: Actor) -> Order:
        """Admin approval decision on a consignment order. The main status is untouched."""
        ensure_allowed(Operation.SET_CONSIGNMENT_STATUS, actor)

        status = to_enum(consignment_status, ConsignmentStatus)
        if status is None:
            raise InvalidStatusValue(
                f"Unknown consignment status: {consignment_status}",
                details={"status": str(consignment_status), "allowed": enum_values(ConsignmentStatus)}
            )

        order = await self.get_order_for_update(order_id)
        state_machine.validate_consignment_transition(order, status.value)

        previous = order.consignment_status
        order.consignment_status = status.value
        self._add_history(order, order.status, order.status, actor, f"Consignment {previous} -> {status.value}")
        await self.db.commit()

        logger.info(f"Order {order_id} consignment {previous} -> {status.value}")
        return order

    async def assign_to_distributor(self, order_id: int, distributor_id: int, actor: Actor) -> Order:
        ensure_allowed(Operation.ASSIGN_DISTRIBUTOR, actor)

        order = await self.get_order_for_update(order_id)
        if not state_machine.can_assign(order.status):
            raise InvalidTransition(
                f"Order in '{order.status}' status cannot be assigned to a distributor",
                details={"order_id": order_id, "status": order.status}
            )

        distributor = await self.db.get(User, distributor_id)
        if not distributor:
            raise UserNotFound(f"User {distributor_id} not found", details={"user_id": distributor_id})
        if distributor.role != UserRole.DISTRIBUTOR.value:
            raise ValidationError(
                f"User {distributor_id} is not a distributor",
                details={"user_id": distributor_id, "role": distributor.role}
            )

        order.distributor_id = distributor_id
        self._add_history(order, order.status, order.status, actor, f"Assigned to distributor {distributor_id}")
        await self.db.commit()

        logger.info(f"Order {order_id} assigned to distributor {distributor_id}")
        return order

    async def apply_referral(
        self,
        order_id: int,
        referral_code: str,
        actor: Actor,
    ) -> Optional[CommissionTransaction]:
        """Attach a referral code to an existing order (buyer or admin)."""
        order = await self.get_order_for_update(order_id)
        if not actor.can(Operation.MANAGE_ANY_ORDER) and order.user_id != actor.id:
            raise PermissionDenied("You do not have access to this order", details={"order_id": order_id})

        return await CommissionService(self.db).record_referral(order, referral_code)

    def _add_history(
        self,
        order: Order,
        from_status: Optional[str],
        to_status: str,
        actor: Optional[Actor],
        notes: Optional[str] = None,
    ) -> None:
        order.status_history.append(OrderStatusHistory(
            from_status=from_status,
            to_status=to_status,
            changed_by=actor.id if actor else None,
            notes=notes,
        ))

    # ==================== QUERIES ====================

    async def get_order_for_update(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    async def get_order(self, order_id: int, actor: Optional[Actor] = None) -> Order:
        """Fetch an order. Non-admin callers must be its buyer or assigned distributor."""
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

        if actor is not None and not actor.can(Operation.VIEW_ANY_ORDER):
            if order.user_id != actor.id and order.distributor_id != actor.id:
                raise PermissionDenied("You do not have access to this order", details={"order_id": order_id})
        return order

    async def list_orders_for_user(self, user_id: int) -> List[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def list_distributor_orders(self, actor: Actor, distributor_id: Optional[int] = None) -> List[Order]:
        ensure_allowed(Operation.LIST_DISTRIBUTOR_ORDERS, actor)
        if not actor.can(Operation.ACT_FOR_ANY_DISTRIBUTOR):
            distributor_id = actor.id
        if distributor_id is None:
            raise ValidationError("distributor_id is required")

        result = await self.db.execute(
            select(Order)
            .where(Order.distributor_id == distributor_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def list_unassigned_orders(self, actor: Actor) -> List[Order]:
        """Orders still waiting for a distributor."""
        ensure_allowed(Operation.ASSIGN_DISTRIBUTOR, actor)
        result = await self.db.execute(
            select(Order)
            .where(
                Order.distributor_id.is_(None),
                Order.status.in_(state_machine.ASSIGNABLE_STATUSES),
            )
            .order_by(Order.created_at, Order.id)
        )
        return list(result.scalars().all())

    async def list_orders(
        self,
        actor: Actor,
        status: Optional[OrderStatus] = None,
        is_wholesale: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        """Paginated order list for admins."""
        ensure_allowed(Operation.LIST_ALL_ORDERS, actor)

        filters = []
        if status:
            filters.append(Order.status == status.value)
        if is_wholesale is not None:
            filters.append(Order.is_wholesale.is_(is_wholesale))

        count_stmt = select(func.count(Order.id))
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if filters:
            count_stmt = count_stmt.where(*filters)
            stmt = stmt.where(*filters)

        total = (await self.db.execute(count_stmt)).scalar() or 0
        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return list(result.scalars().all()), total
