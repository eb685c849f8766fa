"""API endpoints for referral codes, commission stats and payouts."""
from typing import Optional, List

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentUser, CurrentActor
from app.config import settings
from app.core.enum_utils import to_enum
from app.core.exceptions import InvalidStatusValue
from app.models.commission import CommissionStatus
from app.schemas.commission import (
    CommissionAdjust,
    CommissionTransactionResponse,
    PayoutCreate,
    PayoutResponse,
    PayoutSettle,
    ReferralCodeResponse,
    ReferralCodeValidation,
    ReferralStatsResponse,
    ReferralSummaryResponse,
    ReferrerStatsResponse,
)
from app.schemas.user import UserResponse
from app.services.commission_service import CommissionService


router = APIRouter(tags=["Commissions"])


def _referral_link(code: str) -> Optional[str]:
    if not settings.REFERRAL_BASE_URL:
        return None
    return f"{settings.REFERRAL_BASE_URL}{code}"


# ==================== Referral Codes ====================

@router.post("/commissions/referral-code", response_model=ReferralCodeResponse)
async def generate_referral_code(
    db: DB,
    current_user: CurrentUser,
):
    """Issue the caller a referral code, or return the one they already have."""
    service = CommissionService(db)
    code = await service.generate_referral_code(current_user.id)
    return ReferralCodeResponse(referral_code=code, referral_link=_referral_link(code))


@router.get("/commissions/validate/{code}", response_model=ReferralCodeValidation)
async def validate_referral_code(
    code: str,
    db: DB,
):
    """Check whether a referral code exists. Public."""
    service = CommissionService(db)
    referrer = await service.validate_referral_code(code)
    return ReferralCodeValidation(
        code=code.strip().upper(),
        valid=referrer is not None,
        referrer_username=referrer.username if referrer else None,
    )


# ==================== My Commission ====================

@router.get("/commissions/stats", response_model=ReferralStatsResponse)
async def get_my_referral_stats(
    db: DB,
    current_user: CurrentUser,
):
    """Referral statistics for the caller."""
    service = CommissionService(db)
    stats = await service.get_stats(current_user.id)
    return ReferralStatsResponse(**stats)


@router.get("/commissions/transactions", response_model=List[CommissionTransactionResponse])
async def list_my_transactions(
    db: DB,
    current_user: CurrentUser,
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """The caller's commission ledger, newest first."""
    commission_status = None
    if status_filter:
        commission_status = to_enum(status_filter, CommissionStatus)
        if commission_status is None:
            raise InvalidStatusValue(
                f"Unknown commission status: {status_filter}",
                details={"status": status_filter}
            )

    service = CommissionService(db)
    transactions = await service.list_transactions(current_user.id, status=commission_status)
    return [CommissionTransactionResponse.model_validate(t) for t in transactions]


# ==================== Admin Reports ====================

@router.get("/admin/referral-stats", response_model=List[ReferrerStatsResponse])
async def list_referrer_stats(
    db: DB,
    actor: CurrentActor,
):
    """Per-referrer statistics (admin)."""
    service = CommissionService(db)
    rows = await service.list_referrer_stats(actor)
    return [ReferrerStatsResponse(**row) for row in rows]


@router.get("/admin/referral-summary", response_model=ReferralSummaryResponse)
async def get_referral_summary(
    db: DB,
    actor: CurrentActor,
):
    """Program-wide commission totals (admin)."""
    service = CommissionService(db)
    summary = await service.get_system_summary(actor)
    return ReferralSummaryResponse(**summary)


# ==================== Payouts ====================

@router.post("/commissions/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_payout(
    payout_in: PayoutCreate,
    db: DB,
    actor: CurrentActor,
):
    """Bundle a user's pending commission into a payout (admin)."""
    service = CommissionService(db)
    payout = await service.create_payout(payout_in.user_id, payout_in.payment_details, actor)
    return PayoutResponse.model_validate(payout)


@router.post("/commissions/payouts/{payout_id}/settle", response_model=PayoutResponse)
async def settle_payout(
    payout_id: int,
    data: PayoutSettle,
    db: DB,
    actor: CurrentActor,
):
    """Record whether a processing payout went through (admin)."""
    service = CommissionService(db)
    payout = await service.settle_payout(payout_id, data.succeeded, actor)
    return PayoutResponse.model_validate(payout)


@router.patch("/users/{user_id}/commission", response_model=UserResponse)
async def adjust_user_commission(
    user_id: int,
    data: CommissionAdjust,
    db: DB,
    actor: CurrentActor,
):
    """Override a user's commission balance (admin)."""
    service = CommissionService(db)
    user = await service.adjust_user_commission(user_id, data.commission, actor)
    return UserResponse.model_validate(user)
