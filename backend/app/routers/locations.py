"""Location registry router.

Endpoints:
    GET   /api/locations              All locations (optionally active only)
    POST  /api/locations              Create a location
    GET   /api/locations/physical     Active warehouses and vehicles
    GET   /api/locations/integrity    Registry integrity report
    PATCH /api/locations/{id}         Rename / retype / (de)activate
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import StockValidationError
from app.models.location import Location
from app.schemas.location import (
    LocationCreate,
    LocationIntegrityOut,
    LocationOut,
    LocationUpdate,
)
from app.services.locations import (
    check_location_integrity,
    get_location,
    list_physical,
    normalize_location_type,
)
from app.utils.activity import log_activity

router = APIRouter()


def _check_vehicle_fields(location_type: str, vehicle_id: str | None) -> None:
    if normalize_location_type(location_type) == "vehicle" and not vehicle_id:
        raise StockValidationError("Vehicle locations need a vehicle_id", field="vehicle_id")


@router.get("", response_model=list[LocationOut])
async def list_locations(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    stmt = select(Location).order_by(Location.name)
    if active_only:
        stmt = stmt.where(Location.is_active == True)  # noqa: E712
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
async def create_location(
    body: LocationCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.adjust")),
):
    _check_vehicle_fields(body.type, body.vehicle_id)
    location = Location(
        name=body.name.strip(),
        code=body.code,
        type=body.type.strip(),
        vehicle_id=body.vehicle_id,
        is_active=body.is_active,
    )
    db.add(location)
    await db.flush()
    await log_activity(
        db, actor,
        action="created",
        entity_type="location",
        entity_id=location.id,
        entity_code=location.code,
        summary=f"Created {normalize_location_type(location.type)} location {location.name}",
    )
    return location


@router.get("/physical", response_model=list[LocationOut])
async def physical_locations(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    """Locations eligible to hold stock, warehouses first."""
    return await list_physical(db)


@router.get("/integrity", response_model=LocationIntegrityOut)
async def location_integrity(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    report = await check_location_integrity(db)
    return report.as_dict()


@router.patch("/{location_id}", response_model=LocationOut)
async def update_location(
    location_id: str,
    body: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.adjust")),
):
    location = await get_location(db, location_id)
    updates = body.model_dump(exclude_unset=True)

    new_type = updates.get("type", location.type)
    new_vehicle = updates.get("vehicle_id", location.vehicle_id)
    _check_vehicle_fields(new_type or "", new_vehicle)

    for field_name, value in updates.items():
        setattr(location, field_name, value)
    await db.flush()

    await log_activity(
        db, actor,
        action="updated",
        entity_type="location",
        entity_id=location.id,
        entity_code=location.code,
        summary=f"Updated location {location.name}",
        details={k: v for k, v in updates.items()},
    )
    return location
