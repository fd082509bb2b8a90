"""Pydantic schemas for stock levels and movements."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ── Stock levels ────────────────────────────────────────────

class QuantityOut(BaseModel):
    id: str
    sku_id: str
    location_id: str
    quantity: int
    item_name: str | None
    location_name: str | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class LocationStock(BaseModel):
    location_id: str
    location_name: str
    location_type: str
    quantity: int


class StockSnapshot(BaseModel):
    """On-hand across physical locations, plus what is still on order."""
    sku_id: str
    sku: str
    item_name: str
    unit: str
    on_hand: int
    inbound: int
    locations: list[LocationStock]


# ── Operations ──────────────────────────────────────────────

class ReceiptRequest(BaseModel):
    """Book stock into a location."""
    sku_id: str
    location_id: str
    quantity: int = Field(..., ge=1)
    purchase_order_line_id: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    idempotency_key: str | None = Field(None, max_length=200)


class TransferRequest(BaseModel):
    sku_id: str
    from_location_id: str
    to_location_id: str
    quantity: int = Field(..., ge=1)
    notes: str | None = None
    idempotency_key: str | None = Field(None, max_length=200)


class AdjustmentRequest(BaseModel):
    """Signed manual change: positive adds, negative removes."""
    sku_id: str
    location_id: str
    delta: int
    reason: str = Field(..., min_length=1)
    source: Literal["adjustment", "correction"] = "adjustment"
    idempotency_key: str | None = Field(None, max_length=200)


# ── Movement history ────────────────────────────────────────

class MovementOut(BaseModel):
    id: int
    sku_id: str
    item_name: str | None
    quantity: int
    from_location_id: str | None
    from_location_name: str | None
    to_location_id: str | None
    to_location_name: str | None
    source: str
    reference_type: str | None
    reference_id: str | None
    idempotency_key: str | None
    performed_by_id: str
    performed_by_name: str | None
    performed_by_email: str | None
    performed_at: datetime
    notes: str | None

    model_config = {"from_attributes": True}


class BalanceCheckOut(BaseModel):
    """Stored balance next to the ledger replay for one pair."""
    sku_id: str
    location_id: str
    stored: int
    replayed: int
    matches: bool
