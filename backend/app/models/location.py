"""Location — a place stock can sit.

Only ``warehouse`` and ``vehicle`` locations that are active count as
physical (see app.services.locations). Supplier, in-transit and other
locations may exist for reference but never contribute to on-hand.

Locations are soft-disabled through ``is_active`` and never hard-deleted
while quantities reference them.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50))

    # warehouse | vehicle | supplier | in_transit | other
    # stored as entered; compared case-insensitively after trimming
    type: Mapped[str | None] = mapped_column(String(30))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Set for vehicle locations: the vehicle that carries this stock
    vehicle_id: Mapped[str | None] = mapped_column(String(36), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
