"""
Referral Commission Service

Every order placed with a valid referral code earns the code's owner a flat
share of the order subtotal. Each referred order produces exactly one
CommissionTransaction; the ledger is the source of truth for earnings and
`User.commission` mirrors it within the same DB transaction.

Referral Flow:
━━━━━━━━━━━━━━
    checkout with code ──► attribute_referral() ──► CommissionTransaction (PENDING)
                                                          │
                           create_payout() ◄──────────────┤
                                 │                        │
                      PROCESSING ▼                        ▼ loan repayment
                           settle_payout()          (PAID, consumed)
                                 │
                        PAID / FAILED

The referrer's commission tier is tracked from their lifetime referral count
but the applied rate stays flat.
"""
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    CommissionTransactionNotFound,
    InvalidTransition,
    NothingToPayout,
    PayoutNotFound,
    ReferralAlreadyRecorded,
    SelfReferralNotAllowed,
    UserNotFound,
    ValidationError,
)
from app.core.permissions import Actor, Operation, ensure_allowed
from app.models.commission import (
    CommissionPayout,
    CommissionStatus,
    CommissionTransaction,
    CommissionType,
    PayoutStatus,
)
from app.models.order import Order
from app.models.user import COMMISSION_TIER_TABLE, CommissionTier, User
from app.services.pricing_engine import ZERO, round_money

logger = logging.getLogger(__name__)


class CommissionService:
    """Service for the referral commission ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CALCULATION ====================

    @staticmethod
    def compute_commission(order_subtotal: Decimal, is_wholesale: bool) -> Decimal:
        """
        Commission owed on a referred order.

        Retail and wholesale referrals both earn the flat referral rate.
        """
        return round_money(Decimal(order_subtotal) * settings.REFERRAL_COMMISSION_RATE)

    @staticmethod
    def commission_type_for(is_wholesale: bool) -> CommissionType:
        if is_wholesale:
            return CommissionType.WHOLESALE_REFERRAL
        return CommissionType.RETAIL_REFERRAL

    @staticmethod
    def tier_for_referred_orders(referred_orders: int) -> CommissionTier:
        """
        Highest tier whose threshold the lifetime count of referred orders
        has reached. User.total_referrals holds that count: each order can be
        attributed once, and each attribution adds one.
        """
        by_threshold = sorted(COMMISSION_TIER_TABLE.items(), key=lambda item: item[1][0], reverse=True)
        for tier, (min_orders, _rate) in by_threshold:
            if referred_orders >= min_orders:
                return tier
        return CommissionTier.STANDARD

    # ==================== REFERRAL CODES ====================

    async def generate_referral_code(self, user_id: int) -> str:
        """
        Give a user a referral code: 8 uppercase hex characters, unique.
        Users who already have a code keep it.
        """
        user = await self._get_user_for_update(user_id)
        if user.referral_code:
            return user.referral_code

        while True:
            code = secrets.token_hex(settings.REFERRAL_CODE_BYTES).upper()
            taken = await self.db.execute(
                select(User.id).where(User.referral_code == code)
            )
            if taken.scalar_one_or_none() is None:
                break

        user.referral_code = code
        await self.db.commit()

        logger.info(f"Referral code {code} issued to user {user_id}")
        return code

    async def validate_referral_code(self, code: str) -> Optional[User]:
        """Return the code's owner, or None if the code is unknown."""
        if not code:
            return None
        result = await self.db.execute(
            select(User).where(User.referral_code == code.strip().upper())
        )
        return result.scalar_one_or_none()

    # ==================== REFERRAL ATTRIBUTION ====================

    async def record_referral(
        self,
        order: Order,
        referral_code: str,
    ) -> Optional[CommissionTransaction]:
        """
        Attribute an existing order to a referral code and commit.

        Returns None (and changes nothing) when the code is unknown.
        """
        transaction = await self.attribute_referral(order, referral_code)
        if transaction is not None:
            await self.db.commit()
        return transaction

    async def attribute_referral(
        self,
        order: Order,
        referral_code: str,
    ) -> Optional[CommissionTransaction]:
        """
        Attribute an order to a referrer without committing.

        Used by checkout so the order and its commission land in one
        transaction. The referrer row is locked while its totals change.
        """
        code = (referral_code or "").strip().upper()
        result = await self.db.execute(
            select(User)
            .where(User.referral_code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        referrer = result.scalar_one_or_none()

        if not referrer:
            logger.warning(f"Referral code not found: {code!r}, order {order.id} left unattributed")
            return None

        if order.user_id is not None and order.user_id == referrer.id:
            logger.warning(f"User {referrer.id} attempted to use own referral code on order {order.id}")
            raise SelfReferralNotAllowed(
                "You cannot use your own referral code",
                details={"order_id": order.id, "referral_code": code}
            )

        if order.referrer_id is not None or await self._has_transaction(order.id):
            raise ReferralAlreadyRecorded(
                f"Order {order.id} already has a referral recorded",
                details={"order_id": order.id}
            )

        amount = self.compute_commission(order.subtotal, order.is_wholesale)
        commission_type = self.commission_type_for(order.is_wholesale)

        order.referrer_id = referrer.id
        order.referral_code = code
        order.commission_amount = amount
        order.commission_type = commission_type.value

        transaction = CommissionTransaction(
            user_id=referrer.id,
            order_id=order.id,
            amount=amount,
            type=commission_type.value,
            status=CommissionStatus.PENDING.value,
        )
        self.db.add(transaction)

        referrer.total_referrals = (referrer.total_referrals or 0) + 1
        referrer.commission = (referrer.commission or ZERO) + amount

        new_tier = self.tier_for_referred_orders(referrer.total_referrals)
        if referrer.commission_tier != new_tier.value:
            logger.info(f"Referrer {referrer.id} moved from {referrer.commission_tier} to {new_tier.value}")
            referrer.commission_tier = new_tier.value

        await self.db.flush()

        logger.info(
            f"Referral recorded: order {order.id} -> referrer {referrer.id}, "
            f"{commission_type.value} {amount}"
        )
        return transaction

    async def _has_transaction(self, order_id: int) -> bool:
        result = await self.db.execute(
            select(CommissionTransaction.id).where(CommissionTransaction.order_id == order_id)
        )
        return result.scalar_one_or_none() is not None

    # ==================== STATISTICS ====================

    async def get_stats(self, user_id: int) -> dict:
        """Referral statistics for one user, read from the ledger."""
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFound(f"User {user_id} not found", details={"user_id": user_id})

        totals = await self.db.execute(
            select(
                func.count(CommissionTransaction.id),
                func.coalesce(func.sum(case(
                    (CommissionTransaction.status == CommissionStatus.PAID.value, CommissionTransaction.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (CommissionTransaction.status == CommissionStatus.PENDING.value, CommissionTransaction.amount),
                    else_=0,
                )), 0),
            ).where(CommissionTransaction.user_id == user_id)
        )
        total_referrals, total_earnings, pending_earnings = totals.one()

        last_referral = await self.db.execute(
            select(func.max(Order.created_at)).where(Order.referrer_id == user_id)
        )

        return {
            "total_referrals": total_referrals or 0,
            "total_earnings": round_money(Decimal(str(total_earnings))),
            "pending_earnings": round_money(Decimal(str(pending_earnings))),
            "last_referral_date": last_referral.scalar(),
        }

    async def get_system_summary(self, actor: Actor) -> dict:
        """Program-wide totals for the admin dashboard."""
        ensure_allowed(Operation.VIEW_REFERRAL_STATS, actor)

        totals = await self.db.execute(
            select(
                func.coalesce(func.sum(case(
                    (CommissionTransaction.status == CommissionStatus.PAID.value, CommissionTransaction.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (CommissionTransaction.status == CommissionStatus.PENDING.value, CommissionTransaction.amount),
                    else_=0,
                )), 0),
                func.count(func.distinct(CommissionTransaction.user_id)),
            )
        )
        paid, pending, active_referrers = totals.one()

        return {
            "total_commission_paid": round_money(Decimal(str(paid))),
            "total_commission_pending": round_money(Decimal(str(pending))),
            "active_referrers": active_referrers or 0,
        }

    async def list_referrer_stats(self, actor: Actor) -> List[dict]:
        """Per-referrer table for the admin dashboard, busiest referrers first."""
        ensure_allowed(Operation.VIEW_REFERRAL_STATS, actor)

        paid_sum = func.coalesce(func.sum(case(
            (CommissionTransaction.status == CommissionStatus.PAID.value, CommissionTransaction.amount),
            else_=0,
        )), 0)
        pending_sum = func.coalesce(func.sum(case(
            (CommissionTransaction.status == CommissionStatus.PENDING.value, CommissionTransaction.amount),
            else_=0,
        )), 0)

        stmt = (
            select(User, paid_sum, pending_sum)
            .outerjoin(CommissionTransaction, CommissionTransaction.user_id == User.id)
            .where((User.referral_code.is_not(None)) | (User.total_referrals > 0))
            .group_by(User.id)
            .order_by(User.total_referrals.desc(), User.id)
        )
        result = await self.db.execute(stmt)

        return [
            {
                "user_id": user.id,
                "username": user.username,
                "role": user.role,
                "referral_code": user.referral_code,
                "commission_tier": user.commission_tier,
                "total_referrals": user.total_referrals,
                "commission": round_money(user.commission or ZERO),
                "total_earnings": round_money(Decimal(str(paid))),
                "pending_earnings": round_money(Decimal(str(pending))),
            }
            for user, paid, pending in result.all()
        ]

    async def list_transactions(
        self,
        user_id: int,
        status: Optional[CommissionStatus] = None,
    ) -> List[CommissionTransaction]:
        stmt = (
            select(CommissionTransaction)
            .where(CommissionTransaction.user_id == user_id)
            .order_by(CommissionTransaction.created_at.desc(), CommissionTransaction.id.desc())
        )
        if status:
            stmt = stmt.where(CommissionTransaction.status == status.value)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_transaction_for_update(self, transaction_id: int) -> CommissionTransaction:
        result = await self.db.execute(
            select(CommissionTransaction)
            .where(CommissionTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise CommissionTransactionNotFound(
                f"Commission transaction {transaction_id} not found",
                details={"transaction_id": transaction_id}
            )
        return transaction

    # ==================== PAYOUTS ====================

    async def create_payout(
        self,
        user_id: int,
        payment_details: Optional[dict],
        actor: Actor,
    ) -> CommissionPayout:
        """Bundle all of a user's PENDING commission into one PROCESSING payout."""
        ensure_allowed(Operation.MANAGE_PAYOUTS, actor)
        await self._get_user_for_update(user_id)

        result = await self.db.execute(
            select(CommissionTransaction)
            .where(
                CommissionTransaction.user_id == user_id,
                CommissionTransaction.status == CommissionStatus.PENDING.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        transactions = list(result.scalars().all())

        if not transactions:
            raise NothingToPayout(
                f"User {user_id} has no pending commission",
                details={"user_id": user_id}
            )

        payout = CommissionPayout(
            user_id=user_id,
            amount=round_money(sum((t.amount for t in transactions), ZERO)),
            status=PayoutStatus.PROCESSING.value,
            payment_details=payment_details,
        )
        self.db.add(payout)
        await self.db.flush()

        for transaction in transactions:
            transaction.status = CommissionStatus.PROCESSING.value
            transaction.payout_id = payout.id

        await self.db.commit()
        await self.db.refresh(payout, attribute_names=["transactions"])

        logger.info(f"Payout {payout.id} created for user {user_id}: {payout.amount} ({len(transactions)} transactions)")
        return payout

    async def settle_payout(self, payout_id: int, succeeded: bool, actor: Actor) -> CommissionPayout:
        """Record the outcome of a PROCESSING payout on it and its transactions."""
        ensure_allowed(Operation.MANAGE_PAYOUTS, actor)

        result = await self.db.execute(
            select(CommissionPayout)
            .where(CommissionPayout.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payout = result.scalar_one_or_none()
        if not payout:
            raise PayoutNotFound(f"Payout {payout_id} not found", details={"payout_id": payout_id})

        if payout.status != PayoutStatus.PROCESSING.value:
            raise InvalidTransition(
                f"Payout {payout_id} is {payout.status}, only PROCESSING payouts can be settled",
                details={"payout_id": payout_id, "status": payout.status}
            )

        outcome = PayoutStatus.PAID if succeeded else PayoutStatus.FAILED
        payout.status = outcome.value
        payout.processed_at = datetime.now(timezone.utc)

        txn_result = await self.db.execute(
            select(CommissionTransaction)
            .where(CommissionTransaction.payout_id == payout.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        transactions = list(txn_result.scalars().all())
        txn_status = CommissionStatus.PAID if succeeded else CommissionStatus.FAILED
        for transaction in transactions:
            transaction.status = txn_status.value

        if succeeded:
            order_ids = [t.order_id for t in transactions]
            orders = await self.db.execute(select(Order).where(Order.id.in_(order_ids)))
            for order in orders.scalars().all():
                order.commission_paid = True

        await self.db.commit()
        await self.db.refresh(payout, attribute_names=["transactions"])

        logger.info(f"Payout {payout_id} settled as {outcome.value}")
        return payout

    # ==================== ADMIN ====================

    async def adjust_user_commission(self, user_id: int, amount: Decimal, actor: Actor) -> User:
        """Admin override of a user's commission balance."""
        ensure_allowed(Operation.ADJUST_COMMISSION, actor)

        if amount is None or Decimal(amount) < 0:
            raise ValidationError(
                "Commission must be a non-negative amount",
                details={"amount": str(amount)}
            )

        user = await self._get_user_for_update(user_id)
        previous = user.commission
        user.commission = round_money(Decimal(amount))
        await self.db.commit()

        logger.info(f"Commission for user {user_id} adjusted from {previous} to {user.commission} by {actor.id}")
        return user

    # ==================== HELPER METHODS ====================

    async def _get_user_for_update(self, user_id: int) -> User:
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFound(f"User {user_id} not found", details={"user_id": user_id})
        return user
