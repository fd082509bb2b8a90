"""Item catalog router.

Endpoints:
    GET   /api/items     Catalog (optionally active only)
    POST  /api/items     Add an item
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import StockValidationError
from app.models.item import InventoryItem
from app.schemas.location import ItemCreate, ItemOut
from app.utils.activity import log_activity

router = APIRouter()


@router.get("", response_model=list[ItemOut])
async def list_items(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("inventory.read")),
):
    stmt = select(InventoryItem).order_by(InventoryItem.name)
    if active_only:
        stmt = stmt.where(InventoryItem.is_active == True)  # noqa: E712
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("", response_model=ItemOut, status_code=status.HTTP_201_CREATED)
async def create_item(
    body: ItemCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("inventory.adjust")),
):
    sku = body.sku.strip()
    existing = await db.execute(select(InventoryItem.id).where(InventoryItem.sku == sku))
    if existing.scalar_one_or_none():
        raise StockValidationError(f"SKU {sku} already exists", field="sku")

    item = InventoryItem(
        sku=sku,
        name=body.name.strip(),
        unit=body.unit,
        description=body.description,
    )
    db.add(item)
    await db.flush()
    await log_activity(
        db, actor,
        action="created",
        entity_type="item",
        entity_id=item.id,
        entity_code=item.sku,
        summary=f"Added {item.name} to the catalog",
    )
    return item
