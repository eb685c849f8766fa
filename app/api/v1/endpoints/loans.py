"""API endpoints for wholesale loans."""
from typing import Optional, List

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentActor
from app.core.enum_utils import to_enum
from app.core.exceptions import InvalidStatusValue
from app.models.loan import LoanStatus
from app.schemas.loan import (
    LoanCreate,
    LoanResponse,
    LoanStatusUpdate,
    RepaymentCreate,
    RepaymentResponse,
)
from app.services.loan_service import LoanService


router = APIRouter(tags=["Wholesale Loans"])


@router.post("", response_model=LoanResponse, status_code=status.HTTP_201_CREATED)
async def request_loan(
    loan_in: LoanCreate,
    db: DB,
    actor: CurrentActor,
):
    """Request a loan. Wholesalers request for themselves; admins may name a wholesaler."""
    service = LoanService(db)
    wholesaler_id = loan_in.wholesaler_id if loan_in.wholesaler_id is not None else actor.id
    loan = await service.create_loan(wholesaler_id, loan_in.amount, actor=actor)
    return LoanResponse.model_validate(loan)


@router.get("", response_model=List[LoanResponse])
async def list_loans(
    db: DB,
    actor: CurrentActor,
    wholesaler_id: Optional[int] = Query(None, description="Admins only"),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """Admins see every loan; wholesalers see their own."""
    loan_status = None
    if status_filter:
        loan_status = to_enum(status_filter, LoanStatus)
        if loan_status is None:
            raise InvalidStatusValue(
                f"Unknown loan status: {status_filter}",
                details={"status": status_filter}
            )

    service = LoanService(db)
    loans = await service.list_loans(actor, wholesaler_id=wholesaler_id, status=loan_status)
    return [LoanResponse.model_validate(loan) for loan in loans]


@router.get("/{loan_id}", response_model=LoanResponse)
async def get_loan(
    loan_id: int,
    db: DB,
    actor: CurrentActor,
):
    service = LoanService(db)
    loan = await service.get_loan(loan_id, actor)
    return LoanResponse.model_validate(loan)


@router.patch("/{loan_id}/status", response_model=LoanResponse)
async def update_loan_status(
    loan_id: int,
    data: LoanStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Approve or reject a pending loan (admin)."""
    service = LoanService(db)
    loan = await service.set_status(loan_id, data.status, actor)
    return LoanResponse.model_validate(loan)


@router.post("/{loan_id}/repayments", response_model=RepaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_repayment(
    loan_id: int,
    data: RepaymentCreate,
    db: DB,
    actor: CurrentActor,
):
    """Repay part or all of an approved loan."""
    service = LoanService(db)
    repayment = await service.apply_repayment(
        loan_id,
        data.amount,
        repayment_type=data.type,
        referral_transaction_id=data.referral_transaction_id,
        actor=actor,
    )
    return RepaymentResponse.model_validate(repayment)


@router.get("/{loan_id}/repayments", response_model=List[RepaymentResponse])
async def list_repayments(
    loan_id: int,
    db: DB,
    actor: CurrentActor,
):
    service = LoanService(db)
    repayments = await service.list_repayments(loan_id, actor)
    return [RepaymentResponse.model_validate(r) for r in repayments]
