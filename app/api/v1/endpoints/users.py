"""API endpoints for wholesale account administration."""
from fastapi import APIRouter

from app.api.deps import DB, CurrentActor
from app.schemas.user import CustomPricingUpdate, UserResponse, WholesaleStatusUpdate
from app.services.user_service import UserService


router = APIRouter(tags=["Users"])


@router.patch("/{user_id}/wholesale-status", response_model=UserResponse)
async def update_wholesale_status(
    user_id: int,
    data: WholesaleStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Approve, reject, block or unblock a wholesale account (admin)."""
    service = UserService(db)
    user = await service.set_wholesale_status(user_id, data.status, actor)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}/pricing", response_model=UserResponse)
async def update_custom_pricing(
    user_id: int,
    data: CustomPricingUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Replace a wholesaler's custom tier prices (admin)."""
    service = UserService(db)
    user = await service.set_custom_pricing(user_id, data.custom_pricing, actor)
    return UserResponse.model_validate(user)
