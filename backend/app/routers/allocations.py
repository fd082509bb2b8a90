"""Allocations & consumptions router.

Endpoints:
    POST /api/allocations               Reserve stock (409 OVER_ALLOCATION unless overridden)
    POST /api/allocations/{id}/status   reserved → loaded, or → released
    GET  /api/allocations               By job and/or project, with consumed / remaining
    POST /api/consumptions              Record usage (409 OVER_CONSUMPTION unless overridden)
    GET  /api/consumptions              By job

Overrides: repeat the rejected call with ``allow_override: true`` and an
``override_note``. Only admins and managers may confirm.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import StockValidationError
from app.models.allocation import StockAllocation
from app.models.consumption import StockConsumption
from app.schemas.requirements import (
    AllocationCreate,
    AllocationOut,
    AllocationStatusUpdate,
    ConsumptionCreate,
    ConsumptionOut,
)
from app.services import allocations as engine

router = APIRouter()


def _allocation_out(allocation: StockAllocation, consumed: int) -> AllocationOut:
    out = AllocationOut.model_validate(allocation)
    out.qty_consumed = consumed
    out.qty_remaining = max(allocation.qty_allocated - consumed, 0)
    return out


# ── Allocations ─────────────────────────────────────────────

@router.post("/allocations", response_model=AllocationOut, status_code=status.HTTP_201_CREATED)
async def create_allocation(
    body: AllocationCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("requirements.write")),
):
    allocation = await engine.allocate(db, actor, **body.model_dump())
    return _allocation_out(allocation, 0)


@router.post("/allocations/{allocation_id}/status", response_model=AllocationOut)
async def change_allocation_status(
    allocation_id: str,
    body: AllocationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("requirements.write")),
):
    allocation = await engine.advance_allocation(db, actor, allocation_id, body.status)
    return _allocation_out(allocation, await engine.consumed_sum(db, allocation.id))


@router.get("/allocations", response_model=list[AllocationOut])
async def list_allocations(
    job_id: str | None = Query(None),
    project_id: str | None = Query(None),
    include_released: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("requirements.read")),
):
    if not job_id and not project_id:
        raise StockValidationError("Filter by job_id or project_id", field="job_id")

    stmt = select(StockAllocation)
    if job_id:
        stmt = stmt.where(StockAllocation.job_id == job_id)
    if project_id:
        stmt = stmt.where(StockAllocation.project_id == project_id)
    if not include_released:
        stmt = stmt.where(StockAllocation.status != "released")
    result = await db.execute(stmt.order_by(StockAllocation.allocated_at))
    allocations = result.scalars().all()

    consumed = await engine.consumed_totals(db, [a.id for a in allocations])
    return [_allocation_out(a, consumed.get(a.id, 0)) for a in allocations]


# ── Consumptions ────────────────────────────────────────────

@router.post("/consumptions", response_model=ConsumptionOut, status_code=status.HTTP_201_CREATED)
async def create_consumption(
    body: ConsumptionCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.write")),
):
    return await engine.consume(db, actor, **body.model_dump())


@router.get("/consumptions", response_model=list[ConsumptionOut])
async def list_consumptions(
    job_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("requirements.read")),
):
    result = await db.execute(
        select(StockConsumption)
        .where(StockConsumption.job_id == job_id)
        .order_by(StockConsumption.consumed_at)
    )
    return result.scalars().all()
