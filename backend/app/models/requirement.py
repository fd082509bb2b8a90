"""RequirementLine — a project's declared need for an item.

Exactly one of ``sku_id`` / ``description`` is set: catalog items carry a
SKU reference, ad-hoc items a free-text description. Lines referenced by
allocations are never deleted; removal flips ``status`` to ``removed``.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

PRIORITIES = ("main", "hardware", "nice_to_have")


class RequirementLine(Base):
    __tablename__ = "requirement_lines"
    __table_args__ = (
        CheckConstraint("qty_required >= 0", name="ck_requirement_qty_non_negative"),
        CheckConstraint(
            "(sku_id IS NULL) <> (description IS NULL)",
            name="ck_requirement_sku_xor_description",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    sku_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("inventory_items.id")
    )
    description: Mapped[str | None] = mapped_column(String(255))

    qty_required: Mapped[int] = mapped_column(Integer, nullable=False)
    is_blocking: Mapped[bool] = mapped_column(Boolean, default=False)
    # main | hardware | nice_to_have
    priority: Mapped[str] = mapped_column(String(20), default="main")
    # active | removed
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
