"""Pydantic schemas for locations and the item catalog."""

from datetime import datetime

from pydantic import BaseModel, Field


# ── Locations ───────────────────────────────────────────────

class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., description="warehouse | vehicle | supplier | in_transit | other")
    code: str | None = None
    vehicle_id: str | None = None
    is_active: bool = True


class LocationUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    type: str | None = None
    code: str | None = None
    vehicle_id: str | None = None
    is_active: bool | None = None


class LocationOut(BaseModel):
    id: str
    name: str
    code: str | None
    type: str | None
    is_active: bool
    vehicle_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class LocationIntegrityOut(BaseModel):
    ok: bool
    warehouse_count: int
    vehicle_location_count: int
    duplicate_vehicle_locations: dict[str, list[str]]
    stranded_stock: list[dict]
    errors: list[str]
    warnings: list[str]


# ── Items ───────────────────────────────────────────────────

class ItemCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    unit: str = "each"
    description: str | None = None


class ItemOut(BaseModel):
    id: str
    sku: str
    name: str
    unit: str
    description: str | None
    is_active: bool

    model_config = {"from_attributes": True}
