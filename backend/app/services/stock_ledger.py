"""Quantity store + movement ledger.

Every balance change goes through ``record_movement``: the affected
quantity rows are locked, validated against the non-negative rule,
updated, and the movement is appended, all inside one SAVEPOINT of the
caller's transaction. Either everything lands or nothing does.

Reads:
    get_quantity       O(1) stored balance for (sku, location), 0 if absent
    on_hand            Σ stored balance over physical locations
    inbound            Σ open purchase-order remainder, derived, never stored
    stock_snapshot     on-hand + per-location breakdown + inbound
    history            movements touching a sku (optionally one location), newest first
    recompute_balance  fold of the movement ledger; reconciliation only

Writes (all take an explicit Actor):
    receive / transfer / adjust → record_movement → apply_delta + append_movement
"""

from __future__ import annotations

import logging

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth.actor import Actor
from app.config import settings
from app.middleware.exceptions import (
    ConcurrentUpdateError,
    InsufficientStockError,
    PermissionDeniedError,
    ResourceNotFoundError,
    StockValidationError,
)
from app.models.item import InventoryItem
from app.models.location import Location
from app.models.movement import MOVEMENT_SOURCES, StockMovement
from app.models.purchase_order import PurchaseOrderLine
from app.models.quantity import InventoryQuantity
from app.services.locations import (
    get_location,
    normalize_location_type,
    physical_location_filter,
    require_physical_location,
    vehicle_location,
)
from app.utils.activity import log_activity

logger = logging.getLogger(__name__)


# ── Validation helpers ──────────────────────────────────────

def require_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise StockValidationError(f"{field} must be a whole number", field=field)
    if value <= 0:
        raise StockValidationError(f"{field} must be greater than zero", field=field)
    return value


async def get_item(db: AsyncSession, sku_id: str) -> InventoryItem:
    item = await db.get(InventoryItem, sku_id)
    if item is None:
        raise ResourceNotFoundError("Item", sku_id)
    return item


# ── Quantity store ──────────────────────────────────────────

async def get_quantity(db: AsyncSession, sku_id: str, location_id: str) -> int:
    """Stored balance for the pair; 0 when no row exists yet."""
    result = await db.execute(
        select(InventoryQuantity.quantity).where(
            InventoryQuantity.sku_id == sku_id,
            InventoryQuantity.location_id == location_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def _lock_quantity(
    db: AsyncSession, sku_id: str, location_id: str,
) -> InventoryQuantity | None:
    result = await db.execute(
        select(InventoryQuantity)
        .where(
            InventoryQuantity.sku_id == sku_id,
            InventoryQuantity.location_id == location_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _create_quantity(
    db: AsyncSession, item: InventoryItem, location: Location,
) -> InventoryQuantity:
    """Insert the zero row for a new pair, or pick up the one a racing writer made."""
    row = InventoryQuantity(
        sku_id=item.id,
        location_id=location.id,
        quantity=0,
        item_name=item.name,
        location_name=location.name,
    )
    try:
        async with db.begin_nested():
            db.add(row)
    except IntegrityError:
        existing = await _lock_quantity(db, item.id, location.id)
        if existing is None:
            raise ConcurrentUpdateError()
        return existing
    return row


async def apply_delta(
    db: AsyncSession,
    item: InventoryItem,
    location: Location,
    delta: int,
) -> int:
    """Apply a signed change to one balance and return the new quantity.

    Must run inside the same transaction as the movement that explains
    it; ``record_movement`` is the only caller that guarantees that.
    """
    row = await _lock_quantity(db, item.id, location.id)
    available = row.quantity if row is not None else 0

    if available + delta < 0:
        logger.warning(
            "Rejected decrement of %s x %s at %s (available %s)",
            -delta, item.sku, location.name, available,
        )
        raise InsufficientStockError(
            sku_id=item.id,
            location_id=location.id,
            available=available,
            requested=-delta,
            location_name=location.name,
        )

    if row is None:
        row = await _create_quantity(db, item, location)

    row.quantity = row.quantity + delta
    row.item_name = item.name
    row.location_name = location.name
    return row.quantity


# ── Movement ledger ─────────────────────────────────────────

async def append_movement(db: AsyncSession, movement: StockMovement) -> int:
    """Insert a movement row and return its id. There is no update or delete."""
    db.add(movement)
    await db.flush()
    return movement.id


async def find_movement_by_key(
    db: AsyncSession, idempotency_key: str,
) -> StockMovement | None:
    result = await db.execute(
        select(StockMovement).where(StockMovement.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def record_movement(
    db: AsyncSession,
    actor: Actor,
    *,
    sku_id: str,
    quantity: int,
    source: str,
    from_location_id: str | None = None,
    to_location_id: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[StockMovement, bool]:
    """Move stock and journal it atomically.

    Returns ``(movement, created)``. A call carrying an idempotency key
    that was already used returns the original movement with
    ``created=False`` and changes nothing.
    """
    require_positive_int(quantity, "quantity")
    if source not in MOVEMENT_SOURCES:
        raise StockValidationError(f"Unknown movement source: {source}", field="source")
    if not from_location_id and not to_location_id:
        raise StockValidationError(
            "A movement needs a source or destination location", field="to_location_id"
        )
    if from_location_id and from_location_id == to_location_id:
        raise StockValidationError(
            "Source and destination locations must differ", field="to_location_id"
        )

    if idempotency_key:
        existing = await find_movement_by_key(db, idempotency_key)
        if existing is not None:
            logger.info("Movement %s replayed with key %s", existing.id, idempotency_key)
            return existing, False

    item = await get_item(db, sku_id)
    from_location = (
        await require_physical_location(db, from_location_id, "from_location_id")
        if from_location_id else None
    )
    to_location = (
        await require_physical_location(db, to_location_id, "to_location_id")
        if to_location_id else None
    )

    # Lock pairs in a fixed order so two opposite transfers cannot deadlock
    deltas = []
    if from_location is not None:
        deltas.append((from_location, -quantity))
    if to_location is not None:
        deltas.append((to_location, quantity))
    deltas.sort(key=lambda pair: pair[0].id)

    movement = StockMovement(
        sku_id=item.id,
        item_name=item.name,
        quantity=quantity,
        from_location_id=from_location.id if from_location else None,
        from_location_name=from_location.name if from_location else None,
        to_location_id=to_location.id if to_location else None,
        to_location_name=to_location.name if to_location else None,
        source=source,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        performed_by_id=actor.id,
        performed_by_name=actor.name,
        performed_by_email=actor.email,
        notes=notes,
    )

    try:
        async with db.begin_nested():
            for location, delta in deltas:
                await apply_delta(db, item, location, delta)
            await append_movement(db, movement)
    except StaleDataError:
        raise ConcurrentUpdateError()
    except IntegrityError:
        if idempotency_key:
            existing = await find_movement_by_key(db, idempotency_key)
            if existing is not None:
                return existing, False
        raise ConcurrentUpdateError()

    logger.info(
        "Movement %s: %s %s x %s (%s → %s) by %s",
        movement.id, source, quantity, item.sku,
        movement.from_location_name or "-", movement.to_location_name or "-",
        actor.name,
    )
    return movement, True


async def history(
    db: AsyncSession,
    sku_id: str,
    location_id: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[StockMovement]:
    """Movements for a sku, newest first."""
    limit = min(limit or settings.history_default_limit, settings.history_max_limit)
    stmt = select(StockMovement).where(StockMovement.sku_id == sku_id)
    if location_id:
        stmt = stmt.where(
            or_(
                StockMovement.from_location_id == location_id,
                StockMovement.to_location_id == location_id,
            )
        )
    stmt = stmt.order_by(StockMovement.id.desc()).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def recompute_balance(db: AsyncSession, sku_id: str, location_id: str) -> int:
    """Replay the ledger for one pair. Not for routine reads."""
    signed = case(
        (StockMovement.to_location_id == location_id, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    result = await db.execute(
        select(func.coalesce(func.sum(signed), 0)).where(
            StockMovement.sku_id == sku_id,
            or_(
                StockMovement.from_location_id == location_id,
                StockMovement.to_location_id == location_id,
            ),
        )
    )
    return int(result.scalar_one())


# ── Projections ─────────────────────────────────────────────

async def on_hand(db: AsyncSession, sku_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(InventoryQuantity.quantity), 0))
        .join(Location, Location.id == InventoryQuantity.location_id)
        .where(InventoryQuantity.sku_id == sku_id, physical_location_filter())
    )
    return int(result.scalar_one())


async def inbound(db: AsyncSession, sku_id: str) -> int:
    """Σ max(ordered - received, 0) over open purchase-order lines."""
    remaining = case(
        (
            PurchaseOrderLine.qty_ordered > PurchaseOrderLine.qty_received,
            PurchaseOrderLine.qty_ordered - PurchaseOrderLine.qty_received,
        ),
        else_=0,
    )
    result = await db.execute(
        select(func.coalesce(func.sum(remaining), 0)).where(
            PurchaseOrderLine.sku_id == sku_id,
            PurchaseOrderLine.status == "open",
        )
    )
    return int(result.scalar_one())


async def stock_snapshot(db: AsyncSession, sku_id: str) -> dict:
    item = await get_item(db, sku_id)
    result = await db.execute(
        select(InventoryQuantity, Location)
        .join(Location, Location.id == InventoryQuantity.location_id)
        .where(InventoryQuantity.sku_id == sku_id, physical_location_filter())
        .order_by(Location.name)
    )
    locations = [
        {
            "location_id": location.id,
            "location_name": location.name,
            "location_type": normalize_location_type(location.type),
            "quantity": quantity.quantity,
        }
        for quantity, location in result.all()
    ]
    return {
        "sku_id": item.id,
        "sku": item.sku,
        "item_name": item.name,
        "unit": item.unit,
        "on_hand": sum(loc["quantity"] for loc in locations),
        "inbound": await inbound(db, sku_id),
        "locations": locations,
    }


# ── Operations ──────────────────────────────────────────────

async def receive(
    db: AsyncSession,
    actor: Actor,
    *,
    sku_id: str,
    location_id: str,
    quantity: int,
    purchase_order_line_id: str | None = None,
    reference_id: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """Book stock into a location, optionally against a purchase-order line."""
    require_positive_int(quantity, "quantity")

    # A replay must not trip over a line the first call closed
    if idempotency_key:
        existing = await find_movement_by_key(db, idempotency_key)
        if existing is not None:
            logger.info("Receipt %s replayed with key %s", existing.id, idempotency_key)
            return existing

    po_line = None
    if purchase_order_line_id:
        result = await db.execute(
            select(PurchaseOrderLine)
            .where(PurchaseOrderLine.id == purchase_order_line_id)
            .with_for_update()
        )
        po_line = result.scalar_one_or_none()
        if po_line is None:
            raise ResourceNotFoundError("Purchase order line", purchase_order_line_id)
        if po_line.sku_id != sku_id:
            raise StockValidationError(
                "Purchase order line is for a different item", field="purchase_order_line_id"
            )
        if po_line.status != "open":
            raise StockValidationError(
                f"Purchase order line is {po_line.status}", field="purchase_order_line_id"
            )
        reference_id = po_line.purchase_order_id

    movement, created = await record_movement(
        db, actor,
        sku_id=sku_id,
        quantity=quantity,
        source="receipt",
        to_location_id=location_id,
        reference_type="purchase_order",
        reference_id=reference_id,
        notes=notes,
        idempotency_key=idempotency_key,
    )
    if not created:
        return movement

    if po_line is not None:
        po_line.qty_received = (po_line.qty_received or 0) + quantity
        if po_line.qty_received >= po_line.qty_ordered:
            po_line.status = "closed"

    await log_activity(
        db, actor,
        action="received",
        entity_type="movement",
        entity_id=str(movement.id),
        entity_code=reference_id,
        summary=f"Received {quantity} x {movement.item_name} into {movement.to_location_name}",
        details={"purchase_order_line_id": purchase_order_line_id},
    )
    return movement


async def _check_technician_transfer(
    db: AsyncSession, actor: Actor, from_location_id: str, to_location_id: str,
) -> None:
    """Technicians may only move stock between a warehouse and their own van."""
    own = await vehicle_location(db, actor.vehicle_id)
    if own is None:
        raise PermissionDeniedError("No vehicle location is assigned to you")

    endpoints = {from_location_id, to_location_id}
    if own.id not in endpoints:
        raise PermissionDeniedError("Technicians may only transfer to or from their own vehicle")

    other_id = (endpoints - {own.id}).pop()
    other = await get_location(db, other_id)
    if normalize_location_type(other.type) != "warehouse":
        raise PermissionDeniedError(
            "Technicians may only transfer between a warehouse and their own vehicle"
        )


async def transfer(
    db: AsyncSession,
    actor: Actor,
    *,
    sku_id: str,
    from_location_id: str,
    to_location_id: str,
    quantity: int,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """Decrement one location and increment another as one movement."""
    require_positive_int(quantity, "quantity")
    if from_location_id == to_location_id:
        raise StockValidationError(
            "Source and destination locations must differ", field="to_location_id"
        )
    if actor.is_technician:
        await _check_technician_transfer(db, actor, from_location_id, to_location_id)

    movement, created = await record_movement(
        db, actor,
        sku_id=sku_id,
        quantity=quantity,
        source="transfer",
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        reference_type="transfer",
        notes=notes,
        idempotency_key=idempotency_key,
    )
    if created:
        await log_activity(
            db, actor,
            action="transferred",
            entity_type="movement",
            entity_id=str(movement.id),
            summary=(
                f"Moved {quantity} x {movement.item_name} from "
                f"{movement.from_location_name} to {movement.to_location_name}"
            ),
        )
    return movement


async def adjust(
    db: AsyncSession,
    actor: Actor,
    *,
    sku_id: str,
    location_id: str,
    delta: int,
    reason: str,
    source: str = "adjustment",
    reference_type: str = "manual",
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """Apply a signed manual change. A reason is mandatory."""
    if source not in ("adjustment", "correction"):
        raise StockValidationError(
            "Adjustments must use source 'adjustment' or 'correction'", field="source"
        )
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise StockValidationError("delta must be a non-zero whole number", field="delta")
    if not reason or not reason.strip():
        raise StockValidationError("A reason is required for adjustments", field="reason")

    movement, created = await record_movement(
        db, actor,
        sku_id=sku_id,
        quantity=abs(delta),
        source=source,
        from_location_id=location_id if delta < 0 else None,
        to_location_id=location_id if delta > 0 else None,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=reason.strip(),
        idempotency_key=idempotency_key,
    )
    if created:
        where = movement.to_location_name or movement.from_location_name
        await log_activity(
            db, actor,
            action="corrected" if source == "correction" else "adjusted",
            entity_type="movement",
            entity_id=str(movement.id),
            summary=f"{delta:+d} x {movement.item_name} at {where}: {reason.strip()}",
        )
    return movement
