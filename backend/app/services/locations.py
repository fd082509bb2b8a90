"""Location registry — the single definition of a "physical" location.

A location is physical when its type, trimmed and lower-cased, is
``warehouse`` or ``vehicle`` and it is active. Missing or unknown types
normalize to ``other``. Every on-hand sum, transfer endpoint and location
dropdown goes through ``is_physical`` / ``physical_location_filter`` so
no two screens disagree on what counts as in stock.

Also hosts the registry integrity check (warehouses present, one active
location per vehicle, no stock stranded on inactive or non-physical
locations).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import ResourceNotFoundError, StockValidationError
from app.models.location import Location
from app.models.quantity import InventoryQuantity

PHYSICAL_TYPES = frozenset({"warehouse", "vehicle"})
KNOWN_TYPES = frozenset({"warehouse", "vehicle", "supplier", "in_transit", "other"})


# ── Predicate ───────────────────────────────────────────────

def normalize_location_type(value: str | None) -> str:
    """Trim and lower-case; anything unrecognised becomes ``other``."""
    normalized = (value or "").strip().lower()
    return normalized if normalized in KNOWN_TYPES else "other"


def is_physical(location: Location) -> bool:
    return bool(location.is_active) and normalize_location_type(location.type) in PHYSICAL_TYPES


def physical_location_filter():
    """SQL form of ``is_physical`` for use in joins and where clauses."""
    return and_(
        Location.is_active == True,  # noqa: E712
        func.lower(func.trim(Location.type)).in_(PHYSICAL_TYPES),
    )


# ── Lookups ─────────────────────────────────────────────────

async def get_location(db: AsyncSession, location_id: str) -> Location:
    location = await db.get(Location, location_id)
    if location is None:
        raise ResourceNotFoundError("Location", location_id)
    return location


async def list_physical(db: AsyncSession) -> list[Location]:
    """Active warehouse and vehicle locations, warehouses first."""
    result = await db.execute(select(Location).order_by(Location.name))
    locations = [loc for loc in result.scalars().all() if is_physical(loc)]
    locations.sort(key=lambda loc: normalize_location_type(loc.type) != "warehouse")
    return locations


async def require_physical_location(
    db: AsyncSession,
    location_id: str,
    field_name: str = "location_id",
) -> Location:
    """Load a location and reject it unless it can hold stock."""
    location = await get_location(db, location_id)
    if not is_physical(location):
        raise StockValidationError(
            f"Location {location.name} is not an active warehouse or vehicle",
            field=field_name,
        )
    return location


async def default_warehouse(db: AsyncSession) -> Location | None:
    """The first active warehouse, oldest first."""
    result = await db.execute(
        select(Location)
        .where(physical_location_filter())
        .order_by(Location.created_at, Location.name)
    )
    for location in result.scalars().all():
        if normalize_location_type(location.type) == "warehouse":
            return location
    return None


async def vehicle_location(db: AsyncSession, vehicle_id: str | None) -> Location | None:
    """The active stock location carried by a vehicle, if it has one."""
    if not vehicle_id:
        return None
    result = await db.execute(
        select(Location)
        .where(Location.vehicle_id == vehicle_id, physical_location_filter())
        .order_by(Location.created_at)
    )
    for location in result.scalars().all():
        if normalize_location_type(location.type) == "vehicle":
            return location
    return None


# ── Integrity check ─────────────────────────────────────────

@dataclass
class LocationIntegrityReport:
    warehouse_count: int = 0
    vehicle_location_count: int = 0
    duplicate_vehicle_locations: dict[str, list[str]] = field(default_factory=dict)
    stranded_stock: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "warehouse_count": self.warehouse_count,
            "vehicle_location_count": self.vehicle_location_count,
            "duplicate_vehicle_locations": self.duplicate_vehicle_locations,
            "stranded_stock": self.stranded_stock,
            "errors": self.errors,
            "warnings": self.warnings,
        }


async def check_location_integrity(db: AsyncSession) -> LocationIntegrityReport:
    """Read-only scan of the registry. Never modifies anything."""
    report = LocationIntegrityReport()

    result = await db.execute(select(Location))
    locations = result.scalars().all()

    by_vehicle: dict[str, list[str]] = defaultdict(list)
    for location in locations:
        if not is_physical(location):
            continue
        kind = normalize_location_type(location.type)
        if kind == "warehouse":
            report.warehouse_count += 1
        elif kind == "vehicle":
            report.vehicle_location_count += 1
            if location.vehicle_id:
                by_vehicle[location.vehicle_id].append(location.id)
            else:
                report.warnings.append(
                    f"Vehicle location {location.name} has no vehicle assigned"
                )

    if report.warehouse_count == 0:
        report.errors.append("No active warehouse location exists")

    for vehicle_id, location_ids in by_vehicle.items():
        if len(location_ids) > 1:
            report.duplicate_vehicle_locations[vehicle_id] = sorted(location_ids)
            report.errors.append(
                f"Vehicle {vehicle_id} has {len(location_ids)} active locations"
            )

    # Non-zero balances sitting where on-hand cannot see them
    stranded = await db.execute(
        select(InventoryQuantity, Location)
        .join(Location, Location.id == InventoryQuantity.location_id)
        .where(InventoryQuantity.quantity > 0)
    )
    for quantity, location in stranded.all():
        if is_physical(location):
            continue
        report.stranded_stock.append({
            "location_id": location.id,
            "location_name": location.name,
            "sku_id": quantity.sku_id,
            "quantity": quantity.quantity,
        })
        report.warnings.append(
            f"{quantity.quantity} units of {quantity.item_name or quantity.sku_id} "
            f"held at non-physical location {location.name}"
        )

    return report
