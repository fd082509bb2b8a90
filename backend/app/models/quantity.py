"""InventoryQuantity — current balance for one (SKU, location) pair.

This is the fast path for "how much is there right now". Every change
goes through app.services.stock_ledger, which writes a StockMovement in
the same transaction, so the balance always equals the signed sum of the
movements touching the pair.

The row is created on the first movement into a location and never
deleted; it may sit at zero. ``version`` is an optimistic lock counter:
a flush against a stale version raises StaleDataError.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class InventoryQuantity(Base):
    __tablename__ = "inventory_quantities"
    __table_args__ = (
        UniqueConstraint("sku_id", "location_id", name="uq_quantity_sku_location"),
        CheckConstraint("quantity >= 0", name="ck_quantity_non_negative"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    sku_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Denormalized for display
    item_name: Mapped[str | None] = mapped_column(String(255))
    location_name: Mapped[str | None] = mapped_column(String(200))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}
