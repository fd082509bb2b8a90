"""StockMovement — append-only audit ledger of balance changes.

Direction is carried by the location fields:
  receipt      to_location only
  transfer     from_location and to_location
  job_usage    from_location only
  adjustment   one side, depending on the sign of the change
  correction   one side, depending on the sign of the change

Rows are never updated or deleted. A mistake is fixed by appending a
correction. ``quantity`` is always positive.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Integer, String, Text, event,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

MOVEMENT_SOURCES = ("receipt", "transfer", "job_usage", "adjustment", "correction")


class StockMovement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        CheckConstraint(
            "from_location_id IS NOT NULL OR to_location_id IS NOT NULL",
            name="ck_movement_has_location",
        ),
    )

    # Monotonic id gives a total order for history and replay
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sku_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    item_name: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    from_location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id"), index=True
    )
    from_location_name: Mapped[str | None] = mapped_column(String(200))
    to_location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id"), index=True
    )
    to_location_name: Mapped[str | None] = mapped_column(String(200))

    # receipt | transfer | job_usage | adjustment | correction
    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # purchase_order | job | transfer | manual | consumption | reconciliation
    reference_type: Mapped[str | None] = mapped_column(String(30))
    reference_id: Mapped[str | None] = mapped_column(String(36))

    # Replays carrying the same key resolve to the first movement
    idempotency_key: Mapped[str | None] = mapped_column(String(200), unique=True)

    performed_by_id: Mapped[str] = mapped_column(String(36), nullable=False)
    performed_by_name: Mapped[str | None] = mapped_column(String(200))
    performed_by_email: Mapped[str | None] = mapped_column(String(255))
    performed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text)


@event.listens_for(StockMovement, "before_update")
@event.listens_for(StockMovement, "before_delete")
def _reject_mutation(mapper, connection, target):
    raise ValueError(f"Stock movement {target.id} is append-only")
