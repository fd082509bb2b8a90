"""Pydantic schemas for requirement lines, allocations, consumptions and readiness."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Priority = Literal["main", "hardware", "nice_to_have"]


# ── Requirement lines ───────────────────────────────────────

class RequirementCreate(BaseModel):
    project_id: str
    sku_id: str | None = None
    description: str | None = None
    qty_required: int = Field(..., ge=0)
    is_blocking: bool = False
    priority: Priority = "main"
    notes: str | None = None


class RequirementUpdate(BaseModel):
    qty_required: int | None = Field(None, ge=0)
    is_blocking: bool | None = None
    priority: Priority | None = None
    notes: str | None = None


class RequirementOut(BaseModel):
    id: str
    project_id: str
    sku_id: str | None
    description: str | None
    qty_required: int
    is_blocking: bool
    priority: str
    status: str
    notes: str | None
    created_at: datetime

    # Filled in by the router
    qty_allocated: int = 0

    model_config = {"from_attributes": True}


# ── Allocations ─────────────────────────────────────────────

class AllocationCreate(BaseModel):
    """Reserve stock for a job. Omit requirement_id for an ad-hoc reservation."""
    job_id: str
    qty: int = Field(..., ge=1)
    requirement_id: str | None = None
    sku_id: str | None = None
    description: str | None = None
    project_id: str | None = None
    visit_id: str | None = None
    vehicle_id: str | None = None
    from_location_id: str | None = None
    allow_override: bool = False
    override_note: str | None = None
    notes: str | None = None


class AllocationStatusUpdate(BaseModel):
    status: Literal["loaded", "released"]


class AllocationOut(BaseModel):
    id: str
    requirement_id: str | None
    project_id: str | None
    job_id: str
    visit_id: str | None
    vehicle_id: str | None
    from_location_id: str | None
    sku_id: str | None
    description: str | None
    qty_allocated: int
    status: str
    override: bool
    override_note: str | None
    allocated_by_id: str
    allocated_by_name: str | None
    allocated_at: datetime

    qty_consumed: int = 0
    qty_remaining: int = 0

    model_config = {"from_attributes": True}


# ── Consumptions ────────────────────────────────────────────

class ConsumptionCreate(BaseModel):
    job_id: str
    qty: int = Field(..., ge=1)
    allocation_id: str | None = None
    sku_id: str | None = None
    description: str | None = None
    location_id: str | None = None
    project_id: str | None = None
    visit_id: str | None = None
    consumption_id: str | None = Field(None, max_length=36)
    allow_override: bool = False
    override_note: str | None = None
    notes: str | None = None


class ConsumptionOut(BaseModel):
    id: str
    job_id: str
    project_id: str | None
    visit_id: str | None
    sku_id: str | None
    description: str | None
    qty_consumed: int
    source_allocation_id: str | None
    location_id: str | None
    movement_id: int | None
    override: bool
    override_note: str | None
    consumed_by_id: str
    consumed_by_name: str | None
    consumed_at: datetime
    notes: str | None

    model_config = {"from_attributes": True}


# ── Readiness ───────────────────────────────────────────────

class ReadinessOut(BaseModel):
    project_id: str
    total_lines: int
    blocking_lines: int
    total_required: int
    total_allocated: int
    blocking_missing: int
    is_ready: bool
