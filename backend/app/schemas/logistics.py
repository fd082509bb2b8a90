"""Pydantic schemas for logistics run dispatch."""

from datetime import datetime

from pydantic import BaseModel


class RunDispatchRequest(BaseModel):
    """Context whose live allocations should travel together."""
    job_id: str | None = None
    visit_id: str | None = None
    vehicle_id: str | None = None
    location_id: str | None = None
    kind: str = "parts_run"
    assigned_to_user_id: str | None = None
    assigned_to_name: str | None = None
    scheduled_start: datetime | None = None
    notes: str | None = None


class StopOut(BaseModel):
    id: str
    sequence: int
    purpose: str
    instructions: str | None
    location_id: str | None

    model_config = {"from_attributes": True}


class RunOut(BaseModel):
    id: str
    intent_key: str
    intent_kind: str
    allocation_ids: list[str] | None
    job_id: str | None
    visit_id: str | None
    vehicle_id: str | None
    location_id: str | None
    assigned_to_user_id: str | None
    assigned_to_name: str | None
    scheduled_start: datetime | None
    status: str
    notes: str | None
    created_at: datetime
    stops: list[StopOut] = []

    model_config = {"from_attributes": True}


class RunDispatchOut(BaseModel):
    created: bool
    run: RunOut
