"""API endpoints for distributor inventory, dashboard and commissions."""
from typing import Optional, List

from fastapi import APIRouter, Query

from app.api.deps import DB, CurrentActor
from app.core.exceptions import ValidationError
from app.core.permissions import Actor, Operation
from app.models.distributor import DistributorInventory
from app.schemas.distributor import (
    DistributorCommissionResponse,
    DistributorStatsResponse,
    InventoryAdjust,
    InventoryResponse,
)
from app.services.distributor_service import DistributorService


router = APIRouter(tags=["Distributors"])


def _build_inventory_response(row: DistributorInventory) -> InventoryResponse:
    return InventoryResponse(
        id=row.id,
        distributor_id=row.distributor_id,
        product_id=row.product_id,
        product_name=row.product.name if row.product else None,
        quantity=row.quantity,
        updated_at=row.updated_at,
    )


def _resolve_distributor(actor: Actor, distributor_id: Optional[int]) -> int:
    """Distributors always act on themselves; admins must name one."""
    if not actor.can(Operation.ACT_FOR_ANY_DISTRIBUTOR):
        return actor.id
    if distributor_id is None:
        raise ValidationError("distributor_id is required")
    return distributor_id


# ==================== Inventory ====================

@router.get("/distributors/{distributor_id}/inventory", response_model=List[InventoryResponse])
async def get_inventory(
    distributor_id: int,
    db: DB,
    actor: CurrentActor,
):
    """Stock held by a distributor (the distributor themselves, or admin)."""
    service = DistributorService(db)
    rows = await service.get_inventory(distributor_id, actor)
    return [_build_inventory_response(r) for r in rows]


@router.post("/distributors/{distributor_id}/inventory", response_model=InventoryResponse)
async def adjust_inventory(
    distributor_id: int,
    data: InventoryAdjust,
    db: DB,
    actor: CurrentActor,
):
    """Add (positive delta) or remove (negative delta) stock (admin)."""
    service = DistributorService(db)
    row = await service.adjust_inventory(distributor_id, data.product_id, data.delta, actor)
    return _build_inventory_response(row)


# ==================== Dashboard ====================

@router.get("/distributor/stats", response_model=DistributorStatsResponse)
async def get_distributor_stats(
    db: DB,
    actor: CurrentActor,
    distributor_id: Optional[int] = Query(None, description="Admins only"),
):
    """Commission totals and pending deliveries."""
    service = DistributorService(db)
    stats = await service.get_stats(_resolve_distributor(actor, distributor_id), actor)
    return DistributorStatsResponse(**stats)


@router.get("/distributor/commissions", response_model=List[DistributorCommissionResponse])
async def list_distributor_commissions(
    db: DB,
    actor: CurrentActor,
    distributor_id: Optional[int] = Query(None, description="Admins only"),
):
    """Delivery commissions, newest first."""
    service = DistributorService(db)
    commissions = await service.list_commissions(_resolve_distributor(actor, distributor_id), actor)
    return [DistributorCommissionResponse.model_validate(c) for c in commissions]


@router.post("/distributor-commissions/{commission_id}/pay", response_model=DistributorCommissionResponse)
async def pay_distributor_commission(
    commission_id: int,
    db: DB,
    actor: CurrentActor,
):
    """Mark a delivery commission as paid (admin)."""
    service = DistributorService(db)
    commission = await service.mark_commission_paid(commission_id, actor)
    return DistributorCommissionResponse.model_validate(commission)
