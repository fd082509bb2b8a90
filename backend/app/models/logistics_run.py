"""LogisticsRun & LogisticsStop — field transport work built from allocations.

A run is created at most once per intent key: the key is derived from the
sorted allocation ids and the visit/vehicle/location context, and the
column carries a unique constraint. Resubmitting the same allocation set
returns the existing run.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class LogisticsRun(Base):
    __tablename__ = "logistics_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Idempotency ─────────────────────────────────────────
    intent_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    intent_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    intent_metadata: Mapped[dict | None] = mapped_column(JSON)
    allocation_ids: Mapped[list | None] = mapped_column(JSON)

    # ── Context ─────────────────────────────────────────────
    job_id: Mapped[str | None] = mapped_column(String(36), index=True)
    visit_id: Mapped[str | None] = mapped_column(String(36), index=True)
    vehicle_id: Mapped[str | None] = mapped_column(String(36))
    location_id: Mapped[str | None] = mapped_column(String(36))

    # ── Draft fields ────────────────────────────────────────
    assigned_to_user_id: Mapped[str | None] = mapped_column(String(36))
    assigned_to_name: Mapped[str | None] = mapped_column(String(200))
    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime)
    # draft | scheduled | in_progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), default="draft")
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    stops = relationship(
        "LogisticsStop", back_populates="run", lazy="selectin",
        order_by="LogisticsStop.sequence",
    )


class LogisticsStop(Base):
    __tablename__ = "logistics_stops"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("logistics_runs.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    # storage_to_vehicle | vehicle_to_site
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text)
    location_id: Mapped[str | None] = mapped_column(String(36))

    run = relationship("LogisticsRun", back_populates="stops")
