"""Requirement / allocation / consumption engine.

Requirement lines declare what a project needs. Allocations reserve
quantity against a line (or ad-hoc) for a job. Consumptions record what
was actually used, optionally drawn from an allocation, and take the
stock out of a physical location through the movement ledger.

Over-allocation and over-consumption are soft blocks: without
``allow_override`` the call raises with the exact numbers; with it, a
privileged actor's ``override_note`` is stored on the created row.

Read-then-decide checks lock the parent row (requirement line or
allocation) first, so two concurrent callers cannot both see room under
the limit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.middleware.exceptions import (
    InvalidTransitionError,
    OverAllocationError,
    OverConsumptionError,
    PermissionDeniedError,
    ResourceNotFoundError,
    StockValidationError,
)
from app.models.allocation import ALLOCATION_TRANSITIONS, StockAllocation
from app.models.consumption import StockConsumption
from app.models.requirement import PRIORITIES, RequirementLine
from app.services.locations import (
    default_warehouse,
    require_physical_location,
    vehicle_location,
)
from app.services.stock_ledger import get_item, record_movement, require_positive_int
from app.utils.activity import log_activity

logger = logging.getLogger(__name__)


# ── Helpers ─────────────────────────────────────────────────

def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    text = text.strip()
    return text or None


def _require_item_or_description(sku_id: str | None, description: str | None) -> None:
    if bool(sku_id) == bool(description):
        raise StockValidationError(
            "Provide either sku_id or description, not both", field="sku_id"
        )


def _confirm_override(actor: Actor, override_note: str | None) -> str:
    """Validate an override confirmation and return the note to persist."""
    if not actor.is_privileged:
        raise PermissionDeniedError("Only an admin or manager may confirm an override")
    note = _clean(override_note)
    if not note:
        raise StockValidationError(
            "An override note is required to confirm", field="override_note"
        )
    return note


# ── Requirements ────────────────────────────────────────────

async def get_requirement(
    db: AsyncSession, requirement_id: str, lock: bool = False,
) -> RequirementLine:
    stmt = select(RequirementLine).where(RequirementLine.id == requirement_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    line = result.scalar_one_or_none()
    if line is None:
        raise ResourceNotFoundError("Requirement line", requirement_id)
    return line


async def create_requirement(
    db: AsyncSession,
    actor: Actor,
    *,
    project_id: str,
    qty_required: int,
    sku_id: str | None = None,
    description: str | None = None,
    is_blocking: bool = False,
    priority: str = "main",
    notes: str | None = None,
) -> RequirementLine:
    description = _clean(description)
    if not project_id:
        raise StockValidationError("project_id is required", field="project_id")
    _require_item_or_description(sku_id, description)
    if isinstance(qty_required, bool) or not isinstance(qty_required, int) or qty_required < 0:
        raise StockValidationError(
            "qty_required must be a whole number of zero or more", field="qty_required"
        )
    if priority not in PRIORITIES:
        raise StockValidationError(f"Unknown priority: {priority}", field="priority")
    if sku_id:
        await get_item(db, sku_id)

    line = RequirementLine(
        project_id=project_id,
        sku_id=sku_id,
        description=description,
        qty_required=qty_required,
        is_blocking=is_blocking,
        priority=priority,
        notes=notes,
        created_by=actor.id,
    )
    db.add(line)
    await db.flush()

    await log_activity(
        db, actor,
        action="created",
        entity_type="requirement",
        entity_id=line.id,
        entity_code=project_id,
        summary=f"Required {qty_required} x {sku_id or description}",
    )
    return line


async def active_allocated_sum(db: AsyncSession, requirement_id: str) -> int:
    """Σ qty of non-released allocations against the line."""
    result = await db.execute(
        select(func.coalesce(func.sum(StockAllocation.qty_allocated), 0)).where(
            StockAllocation.requirement_id == requirement_id,
            StockAllocation.status != "released",
        )
    )
    return int(result.scalar_one())


async def update_requirement(
    db: AsyncSession,
    actor: Actor,
    requirement_id: str,
    *,
    qty_required: int | None = None,
    is_blocking: bool | None = None,
    priority: str | None = None,
    notes: str | None = None,
) -> RequirementLine:
    line = await get_requirement(db, requirement_id, lock=True)
    if line.status == "removed":
        raise StockValidationError("Requirement line has been removed", field="requirement_id")

    changes: dict = {}
    if qty_required is not None:
        if isinstance(qty_required, bool) or not isinstance(qty_required, int) or qty_required < 0:
            raise StockValidationError(
                "qty_required must be a whole number of zero or more", field="qty_required"
            )
        allocated = await active_allocated_sum(db, line.id)
        if qty_required < allocated:
            raise StockValidationError(
                f"{allocated} already allocated; release allocations before "
                f"reducing the requirement to {qty_required}",
                field="qty_required",
            )
        changes["qty_required"] = [line.qty_required, qty_required]
        line.qty_required = qty_required
    if priority is not None:
        if priority not in PRIORITIES:
            raise StockValidationError(f"Unknown priority: {priority}", field="priority")
        changes["priority"] = [line.priority, priority]
        line.priority = priority
    if is_blocking is not None:
        changes["is_blocking"] = [line.is_blocking, is_blocking]
        line.is_blocking = is_blocking
    if notes is not None:
        line.notes = notes

    await db.flush()
    await log_activity(
        db, actor,
        action="updated",
        entity_type="requirement",
        entity_id=line.id,
        entity_code=line.project_id,
        summary="Requirement line updated",
        details=changes or None,
    )
    return line


async def remove_requirement(
    db: AsyncSession, actor: Actor, requirement_id: str,
) -> RequirementLine:
    """Soft-remove a line. Lines with active allocations stay."""
    line = await get_requirement(db, requirement_id, lock=True)
    if line.status == "removed":
        return line

    allocated = await active_allocated_sum(db, line.id)
    if allocated > 0:
        raise StockValidationError(
            f"Release the {allocated} allocated before removing this line",
            field="requirement_id",
        )

    line.status = "removed"
    await db.flush()
    await log_activity(
        db, actor,
        action="removed",
        entity_type="requirement",
        entity_id=line.id,
        entity_code=line.project_id,
        summary=f"Removed requirement for {line.sku_id or line.description}",
    )
    return line


# ── Allocations ─────────────────────────────────────────────

async def get_allocation(
    db: AsyncSession, allocation_id: str, lock: bool = False,
) -> StockAllocation:
    stmt = select(StockAllocation).where(StockAllocation.id == allocation_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    allocation = result.scalar_one_or_none()
    if allocation is None:
        raise ResourceNotFoundError("Allocation", allocation_id)
    return allocation


async def allocate(
    db: AsyncSession,
    actor: Actor,
    *,
    job_id: str,
    qty: int,
    requirement_id: str | None = None,
    sku_id: str | None = None,
    description: str | None = None,
    project_id: str | None = None,
    visit_id: str | None = None,
    vehicle_id: str | None = None,
    from_location_id: str | None = None,
    allow_override: bool = False,
    override_note: str | None = None,
    notes: str | None = None,
) -> StockAllocation:
    """Reserve ``qty`` for a job, against a requirement line or ad-hoc."""
    if not job_id:
        raise StockValidationError("job_id is required", field="job_id")
    require_positive_int(qty, "qty")
    description = _clean(description)

    line = None
    if requirement_id:
        # Locking the line serializes allocations against it
        line = await get_requirement(db, requirement_id, lock=True)
        if line.status != "active":
            raise StockValidationError(
                "Cannot allocate against a removed requirement line", field="requirement_id"
            )
        sku_id, description = line.sku_id, line.description
        project_id = line.project_id
    else:
        _require_item_or_description(sku_id, description)
        if sku_id:
            await get_item(db, sku_id)

    if from_location_id:
        await require_physical_location(db, from_location_id, "from_location_id")

    override = False
    confirmed_note = None
    if line is not None:
        allocated = await active_allocated_sum(db, line.id)
        if allocated + qty > line.qty_required:
            if not allow_override:
                raise OverAllocationError(
                    requirement_id=line.id,
                    required=line.qty_required,
                    allocated=allocated,
                    requested=qty,
                )
            confirmed_note = _confirm_override(actor, override_note)
            override = True
            logger.warning(
                "Over-allocation confirmed by %s on requirement %s: required %s, new total %s",
                actor.name, line.id, line.qty_required, allocated + qty,
            )

    allocation = StockAllocation(
        requirement_id=line.id if line is not None else None,
        project_id=project_id,
        job_id=job_id,
        visit_id=visit_id,
        vehicle_id=vehicle_id,
        from_location_id=from_location_id,
        sku_id=sku_id,
        description=description,
        qty_allocated=qty,
        status="reserved",
        override=override,
        override_note=confirmed_note,
        allocated_by_id=actor.id,
        allocated_by_name=actor.name,
        notes=notes,
    )
    db.add(allocation)
    await db.flush()

    await log_activity(
        db, actor,
        action="override_confirmed" if override else "allocated",
        entity_type="allocation",
        entity_id=allocation.id,
        entity_code=job_id,
        summary=f"Reserved {qty} x {sku_id or description} for job {job_id}",
        details={"override_note": confirmed_note} if override else None,
    )
    return allocation


async def advance_allocation(
    db: AsyncSession, actor: Actor, allocation_id: str, new_status: str,
) -> StockAllocation:
    """Move an allocation forward: reserved → loaded, or any live state → released."""
    allocation = await get_allocation(db, allocation_id, lock=True)
    allowed = ALLOCATION_TRANSITIONS.get(allocation.status, [])
    if new_status not in allowed:
        raise InvalidTransitionError(allocation.status, new_status, allowed)

    previous = allocation.status
    allocation.status = new_status
    allocation.status_changed_at = datetime.utcnow()
    await db.flush()

    await log_activity(
        db, actor,
        action="status_changed",
        entity_type="allocation",
        entity_id=allocation.id,
        entity_code=allocation.job_id,
        summary=f"Allocation {previous} → {new_status}",
        details={"from": previous, "to": new_status},
    )
    return allocation


# ── Consumption ─────────────────────────────────────────────

async def consumed_sum(db: AsyncSession, allocation_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(StockConsumption.qty_consumed), 0)).where(
            StockConsumption.source_allocation_id == allocation_id,
        )
    )
    return int(result.scalar_one())


async def consumed_totals(db: AsyncSession, allocation_ids: list[str]) -> dict[str, int]:
    """Consumed quantity per allocation id, for listing responses."""
    if not allocation_ids:
        return {}
    result = await db.execute(
        select(
            StockConsumption.source_allocation_id,
            func.sum(StockConsumption.qty_consumed),
        )
        .where(StockConsumption.source_allocation_id.in_(allocation_ids))
        .group_by(StockConsumption.source_allocation_id)
    )
    return {row[0]: int(row[1] or 0) for row in result.all()}


async def resolve_consumption_location(
    db: AsyncSession,
    location_id: str | None,
    allocation: StockAllocation | None,
) -> str:
    """Explicit location, else the allocation's source, else its van, else the main warehouse."""
    if location_id:
        return location_id
    if allocation is not None:
        if allocation.from_location_id:
            return allocation.from_location_id
        van = await vehicle_location(db, allocation.vehicle_id)
        if van is not None:
            return van.id
    warehouse = await default_warehouse(db)
    if warehouse is None:
        raise StockValidationError(
            "No location to consume from and no active warehouse exists", field="location_id"
        )
    return warehouse.id


async def consume(
    db: AsyncSession,
    actor: Actor,
    *,
    job_id: str,
    qty: int,
    allocation_id: str | None = None,
    sku_id: str | None = None,
    description: str | None = None,
    location_id: str | None = None,
    project_id: str | None = None,
    visit_id: str | None = None,
    consumption_id: str | None = None,
    allow_override: bool = False,
    override_note: str | None = None,
    notes: str | None = None,
) -> StockConsumption:
    """Record usage on a job and take catalog stock out of a location.

    ``consumption_id`` may be supplied by the client; repeating a call
    with the same id returns the first record and never deducts twice.
    """
    if not job_id:
        raise StockValidationError("job_id is required", field="job_id")
    require_positive_int(qty, "qty")
    description = _clean(description)

    if consumption_id:
        existing = await db.get(StockConsumption, consumption_id)
        if existing is not None:
            logger.info("Consumption %s replayed", consumption_id)
            return existing
    consumption_id = consumption_id or str(uuid.uuid4())

    allocation = None
    override = False
    confirmed_note = None
    if allocation_id:
        allocation = await get_allocation(db, allocation_id, lock=True)
        if allocation.status == "released":
            raise InvalidTransitionError("released", "consumed", [])
        sku_id, description = allocation.sku_id, allocation.description
        project_id = project_id or allocation.project_id
        visit_id = visit_id or allocation.visit_id

        consumed = await consumed_sum(db, allocation.id)
        if consumed + qty > allocation.qty_allocated:
            if not allow_override:
                raise OverConsumptionError(
                    allocation_id=allocation.id,
                    allocated=allocation.qty_allocated,
                    consumed=consumed,
                    requested=qty,
                )
            confirmed_note = _confirm_override(actor, override_note)
            override = True
            logger.warning(
                "Over-consumption confirmed by %s on allocation %s: remaining %s, requested %s",
                actor.name, allocation.id, allocation.qty_allocated - consumed, qty,
            )
    else:
        _require_item_or_description(sku_id, description)

    movement = None
    resolved_location = None
    if sku_id:
        resolved_location = await resolve_consumption_location(db, location_id, allocation)
        movement, _ = await record_movement(
            db, actor,
            sku_id=sku_id,
            quantity=qty,
            source="job_usage",
            from_location_id=resolved_location,
            reference_type="job",
            reference_id=job_id,
            notes=notes,
            idempotency_key=f"CONSUME:{consumption_id}:{allocation_id or 'adhoc'}",
        )

    consumption = StockConsumption(
        id=consumption_id,
        job_id=job_id,
        project_id=project_id,
        visit_id=visit_id,
        sku_id=sku_id,
        description=description,
        qty_consumed=qty,
        source_allocation_id=allocation.id if allocation is not None else None,
        location_id=resolved_location,
        movement_id=movement.id if movement is not None else None,
        override=override,
        override_note=confirmed_note,
        consumed_by_id=actor.id,
        consumed_by_name=actor.name,
        notes=notes,
    )
    db.add(consumption)
    await db.flush()

    await log_activity(
        db, actor,
        action="override_confirmed" if override else "consumed",
        entity_type="consumption",
        entity_id=consumption.id,
        entity_code=job_id,
        summary=f"Used {qty} x {sku_id or description} on job {job_id}",
        details={"override_note": confirmed_note} if override else None,
    )
    return consumption
