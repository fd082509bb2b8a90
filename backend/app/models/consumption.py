"""StockConsumption — actual usage of stock on a job.

Optionally drawn from an allocation. Immutable once written: returns and
mistakes are recorded as correction movements, never as edits here.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class StockConsumption(Base):
    __tablename__ = "stock_consumptions"
    __table_args__ = (
        CheckConstraint("qty_consumed > 0", name="ck_consumption_qty_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(String(36), index=True)
    visit_id: Mapped[str | None] = mapped_column(String(36))

    sku_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("inventory_items.id")
    )
    description: Mapped[str | None] = mapped_column(String(255))
    qty_consumed: Mapped[int] = mapped_column(Integer, nullable=False)

    # Null for unallocated usage
    source_allocation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("stock_allocations.id"), index=True
    )
    # Where the stock was taken from (null for ad-hoc descriptions)
    location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id")
    )
    movement_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("stock_movements.id")
    )

    override: Mapped[bool] = mapped_column(Boolean, default=False)
    override_note: Mapped[str | None] = mapped_column(Text)

    consumed_by_id: Mapped[str] = mapped_column(String(36), nullable=False)
    consumed_by_name: Mapped[str | None] = mapped_column(String(200))
    consumed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
