"""ReconciliationAlert — a stored balance that disagrees with its movements.

Raised by the reconciliation job when replaying the movement ledger for a
(SKU, location) pair gives a different number than the stored quantity,
or when the location registry is inconsistent. Alerts are never
auto-corrected; an operator reviews them.

Lifecycle:  open → acknowledged → resolved | dismissed
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ReconciliationAlert(Base):
    __tablename__ = "reconciliation_alerts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Classification ───────────────────────────────────────
    # balance_mismatch | location_integrity
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # critical | high | medium | low
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # ── Mismatch details ─────────────────────────────────────
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # expected = replayed from movements, actual = stored quantity
    expected_value: Mapped[float | None] = mapped_column(Float)
    actual_value: Mapped[float | None] = mapped_column(Float)
    variance: Mapped[float | None] = mapped_column(Float)
    variance_pct: Mapped[float | None] = mapped_column(Float)
    unit: Mapped[str | None] = mapped_column(String(20))

    # {"sku_id": "...", "location_id": "..."}
    entity_refs: Mapped[dict | None] = mapped_column(JSON)

    # ── Status ───────────────────────────────────────────────
    # open | acknowledged | resolved | dismissed
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolved_by: Mapped[str | None] = mapped_column(String(36))
    resolution_note: Mapped[str | None] = mapped_column(Text)

    # ── Run metadata ─────────────────────────────────────────
    run_id: Mapped[str | None] = mapped_column(String(36), index=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
