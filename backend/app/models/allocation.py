"""StockAllocation — a reservation of stock for a job.

Lifecycle:  reserved → loaded → released
            reserved → released

``released`` is terminal and excluded from every active sum; the row is
kept for audit. Consumption is tracked in StockConsumption, not here.

When a reservation exceeds its requirement line, ``override`` is True and
``override_note`` holds the confirmation text the privileged actor gave.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

ALLOCATION_TRANSITIONS: dict[str, list[str]] = {
    "reserved": ["loaded", "released"],
    "loaded": ["released"],
    "released": [],
}


class StockAllocation(Base):
    __tablename__ = "stock_allocations"
    __table_args__ = (
        CheckConstraint("qty_allocated > 0", name="ck_allocation_qty_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # Null for ad-hoc allocations
    requirement_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("requirement_lines.id"), index=True
    )
    project_id: Mapped[str | None] = mapped_column(String(36), index=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    visit_id: Mapped[str | None] = mapped_column(String(36), index=True)
    vehicle_id: Mapped[str | None] = mapped_column(String(36), index=True)
    from_location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id"), index=True
    )

    sku_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("inventory_items.id")
    )
    description: Mapped[str | None] = mapped_column(String(255))
    qty_allocated: Mapped[int] = mapped_column(Integer, nullable=False)

    # reserved | loaded | released
    status: Mapped[str] = mapped_column(String(20), default="reserved", index=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime)

    override: Mapped[bool] = mapped_column(Boolean, default=False)
    override_note: Mapped[str | None] = mapped_column(Text)

    allocated_by_id: Mapped[str] = mapped_column(String(36), nullable=False)
    allocated_by_name: Mapped[str | None] = mapped_column(String(200))
    allocated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
