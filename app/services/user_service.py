"""Wholesale account administration: review status and per-customer pricing."""
import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import enum_values, to_enum
from app.core.exceptions import InvalidStatusValue, UserNotFound, ValidationError
from app.core.permissions import Actor, Operation, ensure_allowed
from app.models.user import User, UserRole, WholesaleStatus
from app.services.pricing_engine import PricingTier, round_money

logger = logging.getLogger(__name__)


class UserService:
    """Admin operations on wholesale accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def set_wholesale_status(self, user_id: int, status, actor: Actor) -> User:
        """Approve, reject, block or unblock (set back to APPROVED) a wholesale account."""
        ensure_allowed(Operation.MANAGE_WHOLESALE_ACCOUNTS, actor)

        new_status = to_enum(status, WholesaleStatus)
        if new_status is None:
            raise InvalidStatusValue(f"Unknown wholesale status: {status}", details={"status": str(status), "allowed": enum_values(WholesaleStatus)})

        user = await self._get_wholesaler_for_update(user_id)
        previous = user.wholesale_status
        user.wholesale_status = new_status.value
        await self.db.commit()

        logger.info(f"Wholesale account {user_id} status {previous} -> {new_status.value} by {actor.id}")
        return user

    async def set_custom_pricing(self, user_id: int, pricing: dict, actor: Actor) -> User:
        """
        Replace a wholesaler's price overrides.

        Keys are "{flavor}_{strength}_{tier}" with tier one of TIER_1..TIER_7;
        values are positive unit prices.
        """
        ensure_allowed(Operation.MANAGE_WHOLESALE_ACCOUNTS, actor)

        cleaned = {}
        for key, value in (pricing or {}).items():
            # flavor, strength, "TIER", n
            parts = key.rsplit("_", 3)
            if len(parts) != 4 or to_enum(f"{parts[2]}_{parts[3]}", PricingTier) is None:
                raise ValidationError(
                    f"Custom pricing key must end with a pricing tier: {key}",
                    details={"key": key}
                )
            try:
                price = Decimal(str(value))
            except (InvalidOperation, ValueError):
                raise ValidationError(f"Invalid price for {key}: {value}", details={"key": key})
            if price <= 0:
                raise ValidationError(f"Price for {key} must be positive", details={"key": key})
            # Stored as a JSON string to keep cents exact
            cleaned[key] = str(round_money(price))

        user = await self._get_wholesaler_for_update(user_id)
        user.custom_pricing = cleaned or None
        await self.db.commit()

        logger.info(f"Custom pricing for wholesaler {user_id} set ({len(cleaned)} overrides)")
        return user

    async def _get_wholesaler_for_update(self, user_id: int) -> User:
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFound(f"User {user_id} not found", details={"user_id": user_id})
        if user.role != UserRole.WHOLESALE.value:
            raise ValidationError(
                f"User {user_id} is not a wholesale account",
                details={"user_id": user_id, "role": user.role}
            )
        return user
