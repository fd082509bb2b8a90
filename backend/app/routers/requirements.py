"""Requirement lines router — a project's material plan.

Endpoints:
    POST   /api/requirements              Add a line
    GET    /api/requirements?project_id=  Lines for a project, with allocated totals
    PATCH  /api/requirements/{id}         Change qty / blocking / priority / notes
    DELETE /api/requirements/{id}         Soft-remove (rejected while allocated)
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.models.allocation import StockAllocation
from app.models.requirement import RequirementLine
from app.schemas.requirements import RequirementCreate, RequirementOut, RequirementUpdate
from app.services import allocations as engine

router = APIRouter()


async def _with_allocated(db: AsyncSession, line: RequirementLine) -> RequirementOut:
    out = RequirementOut.model_validate(line)
    out.qty_allocated = await engine.active_allocated_sum(db, line.id)
    return out


@router.post("", response_model=RequirementOut, status_code=status.HTTP_201_CREATED)
async def create_requirement(
    body: RequirementCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("requirements.write")),
):
    line = await engine.create_requirement(
        db, actor,
        project_id=body.project_id,
        sku_id=body.sku_id,
        description=body.description,
        qty_required=body.qty_required,
        is_blocking=body.is_blocking,
        priority=body.priority,
        notes=body.notes,
    )
    return await _with_allocated(db, line)


@router.get("", response_model=list[RequirementOut])
async def list_requirements(
    project_id: str = Query(...),
    include_removed: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("requirements.read")),
):
    stmt = select(RequirementLine).where(RequirementLine.project_id == project_id)
    if not include_removed:
        stmt = stmt.where(RequirementLine.status == "active")
    lines = (await db.execute(stmt.order_by(RequirementLine.created_at))).scalars().all()

    totals_q = await db.execute(
        select(StockAllocation.requirement_id, func.sum(StockAllocation.qty_allocated))
        .where(
            StockAllocation.requirement_id.in_([line.id for line in lines]),
            StockAllocation.status != "released",
        )
        .group_by(StockAllocation.requirement_id)
    )
    totals = {row[0]: int(row[1] or 0) for row in totals_q.all()}

    items = []
    for line in lines:
        out = RequirementOut.model_validate(line)
        out.qty_allocated = totals.get(line.id, 0)
        items.append(out)
    return items


@router.patch("/{requirement_id}", response_model=RequirementOut)
async def update_requirement(
    requirement_id: str,
    body: RequirementUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("requirements.write")),
):
    line = await engine.update_requirement(
        db, actor, requirement_id, **body.model_dump(exclude_unset=True),
    )
    return await _with_allocated(db, line)


@router.delete("/{requirement_id}", response_model=RequirementOut)
async def remove_requirement(
    requirement_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("requirements.write")),
):
    line = await engine.remove_requirement(db, actor, requirement_id)
    return await _with_allocated(db, line)
