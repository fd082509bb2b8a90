"""Stock levels and movements router.

Endpoints:
    GET  /api/inventory/stock/{sku_id}   On-hand, per-location breakdown, inbound
    GET  /api/inventory/quantities       Stored balances (filter by sku / location)
    POST /api/inventory/receipt          Book stock in (optionally against a PO line)
    POST /api/inventory/transfer         Move stock between two physical locations
    POST /api/inventory/adjustment       Signed manual adjustment / correction
    GET  /api/inventory/movements        Movement history, newest first
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.config import settings
from app.database import get_db
from app.models.movement import StockMovement
from app.models.quantity import InventoryQuantity
from app.schemas.common import PaginatedResponse
from app.schemas.inventory import (
    AdjustmentRequest,
    MovementOut,
    QuantityOut,
    ReceiptRequest,
    StockSnapshot,
    TransferRequest,
)
from app.services import stock_ledger

router = APIRouter()


# ── GET /api/inventory/stock/{sku_id} ───────────────────────

@router.get("/stock/{sku_id}", response_model=StockSnapshot)
async def get_stock(
    sku_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    return await stock_ledger.stock_snapshot(db, sku_id)


# ── GET /api/inventory/quantities ───────────────────────────

@router.get("/quantities", response_model=list[QuantityOut])
async def list_quantities(
    sku_id: str | None = Query(None),
    location_id: str | None = Query(None),
    include_zero: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    stmt = select(InventoryQuantity)
    if sku_id:
        stmt = stmt.where(InventoryQuantity.sku_id == sku_id)
    if location_id:
        stmt = stmt.where(InventoryQuantity.location_id == location_id)
    if not include_zero:
        stmt = stmt.where(InventoryQuantity.quantity > 0)
    result = await db.execute(
        stmt.order_by(InventoryQuantity.item_name, InventoryQuantity.location_name)
    )
    return result.scalars().all()


# ── POST /api/inventory/receipt ─────────────────────────────

@router.post("/receipt", response_model=MovementOut, status_code=status.HTTP_201_CREATED)
async def receive_stock(
    body: ReceiptRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.write")),
):
    return await stock_ledger.receive(
        db, actor,
        sku_id=body.sku_id,
        location_id=body.location_id,
        quantity=body.quantity,
        purchase_order_line_id=body.purchase_order_line_id,
        reference_id=body.reference_id,
        notes=body.notes,
        idempotency_key=body.idempotency_key,
    )


# ── POST /api/inventory/transfer ────────────────────────────

@router.post("/transfer", response_model=MovementOut, status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    body: TransferRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.write")),
):
    """Technicians may only move stock between a warehouse and their own vehicle."""
    return await stock_ledger.transfer(
        db, actor,
        sku_id=body.sku_id,
        from_location_id=body.from_location_id,
        to_location_id=body.to_location_id,
        quantity=body.quantity,
        notes=body.notes,
        idempotency_key=body.idempotency_key,
    )


# ── POST /api/inventory/adjustment ──────────────────────────

@router.post("/adjustment", response_model=MovementOut, status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    body: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.adjust")),
):
    """Manual change (positive to add, negative to remove). Reason required."""
    return await stock_ledger.adjust(
        db, actor,
        sku_id=body.sku_id,
        location_id=body.location_id,
        delta=body.delta,
        reason=body.reason,
        source=body.source,
        idempotency_key=body.idempotency_key,
    )


# ── GET /api/inventory/movements ────────────────────────────

@router.get("/movements", response_model=PaginatedResponse[MovementOut])
async def list_movements(
    sku_id: str = Query(...),
    location_id: str | None = Query(None),
    limit: int = Query(settings.history_default_limit, ge=1, le=settings.history_max_limit),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    count_stmt = select(func.count(StockMovement.id)).where(StockMovement.sku_id == sku_id)
    if location_id:
        count_stmt = count_stmt.where(
            or_(
                StockMovement.from_location_id == location_id,
                StockMovement.to_location_id == location_id,
            )
        )
    total = (await db.execute(count_stmt)).scalar() or 0

    items = await stock_ledger.history(
        db, sku_id, location_id=location_id, limit=limit, offset=offset,
    )
    return PaginatedResponse(
        items=[MovementOut.model_validate(m) for m in items],
        total=total,
        limit=limit,
        offset=offset,
    )
