import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    DistributorCommissionNotFound,
    InsufficientInventory,
    InvalidTransition,
    PermissionDenied,
    ProductNotFound,
    UserNotFound,
    ValidationError,
)
from app.core.permissions import Actor, Operation, ensure_allowed
from app.models.distributor import (
    DistributorCommission,
    DistributorCommissionStatus,
    DistributorInventory,
)
from app.models.order import Order
from app.models.product import Product
from app.models.user import User, UserRole
from app.services.order_state_machine import TERMINAL_STATUSES
from app.services.pricing_engine import round_money

logger = logging.getLogger(__name__)


class DistributorService:
    """Service for distributor stock, dashboard figures and delivery commission."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== INVENTORY ====================

    async def adjust_inventory(
        self,
        distributor_id: int,
        product_id: int,
        delta: int,
        actor: Actor,
    ) -> DistributorInventory:
        """Add (or with a negative delta, remove) stock held by a distributor."""
        ensure_allowed(Operation.MANAGE_DISTRIBUTOR_INVENTORY, actor)

        if delta is None or delta == 0:
            raise ValidationError("Inventory adjustment must be non-zero", details={"delta": delta})

        await self._get_distributor(distributor_id)
        product = await self.db.get(Product, product_id)
        if not product:
            raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})

        result = await self.db.execute(
            select(DistributorInventory)
            .where(
                DistributorInventory.distributor_id == distributor_id,
                DistributorInventory.product_id == product_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        current = row.quantity if row else 0

        new_quantity = current + delta
        if new_quantity < 0:
            raise InsufficientInventory(
                f"Distributor {distributor_id} holds {current} of product {product_id}, cannot remove {-delta}",
                details={"distributor_id": distributor_id, "product_id": product_id, "available": current}
            )

        if row is None:
            row = DistributorInventory(
                distributor_id=distributor_id,
                product_id=product_id,
                quantity=new_quantity,
            )
            self.db.add(row)
        else:
            row.quantity = new_quantity

        await self.db.commit()
        await self.db.refresh(row, attribute_names=["product"])

        logger.info(f"Distributor {distributor_id} inventory for product {product_id}: {current} -> {new_quantity}")
        return row

    async def get_inventory(self, distributor_id: int, actor: Actor) -> List[DistributorInventory]:
        self._ensure_self_or_admin(distributor_id, actor)
        result = await self.db.execute(
            select(DistributorInventory)
            .where(DistributorInventory.distributor_id == distributor_id)
            .order_by(DistributorInventory.product_id)
        )
        return list(result.scalars().all())

    # ==================== DASHBOARD ====================

    async def get_stats(self, distributor_id: int, actor: Actor) -> dict:
        """
        Dashboard figures for a distributor.

        total / this_month are commission sums; pending_deliveries counts
        assigned orders that are neither delivered nor cancelled.
        """
        ensure_allowed(Operation.VIEW_DISTRIBUTOR_DASHBOARD, actor)
        self._ensure_self_or_admin(distributor_id, actor)

        now = datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        total = await self.db.execute(
            select(func.coalesce(func.sum(DistributorCommission.amount), 0))
            .where(DistributorCommission.distributor_id == distributor_id)
        )
        this_month = await self.db.execute(
            select(func.coalesce(func.sum(DistributorCommission.amount), 0))
            .where(
                DistributorCommission.distributor_id == distributor_id,
                DistributorCommission.created_at >= month_start,
            )
        )
        pending = await self.db.execute(
            select(func.count(Order.id))
            .where(
                Order.distributor_id == distributor_id,
                Order.status.not_in(TERMINAL_STATUSES),
            )
        )

        return {
            "total": round_money(Decimal(str(total.scalar() or 0))),
            "this_month": round_money(Decimal(str(this_month.scalar() or 0))),
            "pending_deliveries": pending.scalar() or 0,
        }

    # ==================== COMMISSION ====================

    @staticmethod
    def compute_commission(order_total: Decimal) -> Decimal:
        return round_money(Decimal(order_total) * settings.DISTRIBUTOR_COMMISSION_RATE)

    async def record_delivery_commission(self, order: Order) -> Optional[DistributorCommission]:
        """
        Credit the assigned distributor for a delivered order, without committing.
        Returns the existing row if the order was already credited.
        """
        if order.distributor_id is None:
            return None

        existing = await self.db.execute(
            select(DistributorCommission).where(DistributorCommission.order_id == order.id)
        )
        commission = existing.scalar_one_or_none()
        if commission:
            logger.info(f"Distributor commission already recorded for order {order.id}")
            return commission

        commission = DistributorCommission(
            distributor_id=order.distributor_id,
            order_id=order.id,
            amount=self.compute_commission(order.total),
            status=DistributorCommissionStatus.PENDING.value,
        )
        self.db.add(commission)
        await self.db.flush()

        logger.info(
            f"Distributor commission created for distributor {order.distributor_id}: "
            f"Order {order.id}, Amount: {commission.amount}"
        )
        return commission

    async def list_commissions(self, distributor_id: int, actor: Actor) -> List[DistributorCommission]:
        ensure_allowed(Operation.VIEW_DISTRIBUTOR_DASHBOARD, actor)
        self._ensure_self_or_admin(distributor_id, actor)
        result = await self.db.execute(
            select(DistributorCommission)
            .where(DistributorCommission.distributor_id == distributor_id)
            .order_by(DistributorCommission.created_at.desc(), DistributorCommission.id.desc())
        )
        return list(result.scalars().all())

    async def mark_commission_paid(self, commission_id: int, actor: Actor) -> DistributorCommission:
        ensure_allowed(Operation.PAY_DISTRIBUTOR_COMMISSION, actor)

        result = await self.db.execute(
            select(DistributorCommission)
            .where(DistributorCommission.id == commission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        commission = result.scalar_one_or_none()
        if not commission:
            raise DistributorCommissionNotFound(
                f"Distributor commission {commission_id} not found",
                details={"commission_id": commission_id}
            )

        if commission.status == DistributorCommissionStatus.PAID.value:
            raise InvalidTransition(
                f"Distributor commission {commission_id} is already paid",
                details={"commission_id": commission_id}
            )

        commission.status = DistributorCommissionStatus.PAID.value
        commission.paid_at = datetime.now(timezone.utc)
        await self.db.commit()

        logger.info(f"Distributor commission {commission_id} paid ({commission.amount})")
        return commission

    # ==================== HELPER METHODS ====================

    async def _get_distributor(self, distributor_id: int) -> User:
        user = await self.db.get(User, distributor_id)
        if not user:
            raise UserNotFound(f"User {distributor_id} not found", details={"user_id": distributor_id})
        if user.role != UserRole.DISTRIBUTOR.value:
            raise ValidationError(
                f"User {distributor_id} is not a distributor",
                details={"user_id": distributor_id, "role": user.role}
            )
        return user

    @staticmethod
    def _ensure_self_or_admin(distributor_id: int, actor: Actor) -> None:
        if actor.can(Operation.ACT_FOR_ANY_DISTRIBUTOR):
            return
        if actor.role != UserRole.DISTRIBUTOR or actor.id != distributor_id:
            raise PermissionDenied(
                "You may only view your own distributor data",
                details={"distributor_id": distributor_id}
            )
