"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, actor, action="transferred", entity_type="movement",
        entity_id=str(movement.id), entity_code=item.sku,
        summary="Moved 4 x Cable from Main Warehouse to Van 2",
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.models.activity_log import ActivityLog


async def log_activity(
    db: AsyncSession,
    actor: Actor,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        actor_id=actor.id,
        actor_name=actor.name,
        actor_email=actor.email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
