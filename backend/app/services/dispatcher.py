"""Idempotent logistics-run dispatch.

A run is identified by what it carries, not by a client token:

    intent_key = "{kind}:{visit|none}:{vehicle|none}:{location|none}:{digest}"
    digest     = base64url(sha256("|".join(sorted(allocation_ids)))), unpadded

Submitting the same allocation set for the same context returns the run
created the first time. Changing the set (e.g. releasing one allocation)
yields a different key and therefore a new run.

``get_or_create_run`` relies on the unique constraint on
``logistics_runs.intent_key``: the insert runs in a SAVEPOINT and a
losing racer re-reads the winner's row.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.middleware.exceptions import ConcurrentUpdateError, StockValidationError
from app.models.allocation import StockAllocation
from app.models.logistics_run import LogisticsRun, LogisticsStop
from app.utils.activity import log_activity

logger = logging.getLogger(__name__)

NONE_TOKEN = "none"
KEY_SEPARATOR = ":"
DEFAULT_INTENT_KIND = "parts_run"

DEFAULT_STOPS = [
    {"sequence": 1, "purpose": "storage_to_vehicle", "instructions": "Load parts from storage to vehicle"},
    {"sequence": 2, "purpose": "vehicle_to_site", "instructions": "Deliver parts to site"},
]


# ── Key derivation ──────────────────────────────────────────

def compute_allocation_digest(allocation_ids: list[str]) -> str:
    """Order-independent digest of an allocation id set."""
    joined = "|".join(sorted(allocation_ids))
    digest = hashlib.sha256(joined.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def _check_segment(value: str, field_name: str) -> str:
    if KEY_SEPARATOR in value:
        raise StockValidationError(
            f"{field_name} may not contain '{KEY_SEPARATOR}'", field=field_name
        )
    return value


def _token(value: str | None, field_name: str) -> str:
    # "none" is reserved for absent context; escape a literal id of that name
    if value is None or value == "":
        return NONE_TOKEN
    _check_segment(value, field_name)
    if value == NONE_TOKEN:
        return f"id-{value}"
    return value


def build_intent_key(
    kind: str,
    allocation_ids: list[str],
    visit_id: str | None = None,
    vehicle_id: str | None = None,
    location_id: str | None = None,
) -> str:
    """Join kind, context and digest; segments never contain the separator."""
    if not kind:
        raise StockValidationError("kind is required", field="kind")
    return KEY_SEPARATOR.join([
        _check_segment(kind, "kind"),
        _token(visit_id, "visit_id"),
        _token(vehicle_id, "vehicle_id"),
        _token(location_id, "location_id"),
        compute_allocation_digest(allocation_ids),
    ])


# ── Drafts ──────────────────────────────────────────────────

@dataclass
class RunDraft:
    job_id: str | None = None
    visit_id: str | None = None
    vehicle_id: str | None = None
    location_id: str | None = None
    assigned_to_user_id: str | None = None
    assigned_to_name: str | None = None
    scheduled_start: datetime | None = None
    status: str = "draft"
    notes: str | None = None
    stops: list[dict] = field(default_factory=lambda: [dict(s) for s in DEFAULT_STOPS])


# ── Get-or-create ───────────────────────────────────────────

async def find_run_by_intent(db: AsyncSession, intent_key: str) -> LogisticsRun | None:
    result = await db.execute(
        select(LogisticsRun).where(LogisticsRun.intent_key == intent_key)
    )
    return result.scalar_one_or_none()


async def get_or_create_run(
    db: AsyncSession,
    actor: Actor,
    *,
    intent_key: str,
    kind: str,
    metadata: dict | None,
    draft: RunDraft,
    allocation_ids: list[str] | None = None,
) -> tuple[LogisticsRun, bool]:
    """Return ``(run, created)``. An existing run is returned untouched."""
    existing = await find_run_by_intent(db, intent_key)
    if existing is not None:
        logger.info("Reusing run %s for intent %s", existing.id, intent_key)
        return existing, False

    run = LogisticsRun(
        intent_key=intent_key,
        intent_kind=kind,
        intent_metadata=metadata,
        allocation_ids=sorted(allocation_ids or []),
        job_id=draft.job_id,
        visit_id=draft.visit_id,
        vehicle_id=draft.vehicle_id,
        location_id=draft.location_id,
        assigned_to_user_id=draft.assigned_to_user_id,
        assigned_to_name=draft.assigned_to_name,
        scheduled_start=draft.scheduled_start,
        status=draft.status,
        notes=draft.notes,
        created_by=actor.id,
    )
    try:
        async with db.begin_nested():
            db.add(run)
            await db.flush()
            for stop in draft.stops:
                db.add(LogisticsStop(
                    run_id=run.id,
                    sequence=stop["sequence"],
                    purpose=stop["purpose"],
                    instructions=stop.get("instructions"),
                    location_id=stop.get("location_id"),
                ))
    except IntegrityError:
        # Another request inserted the same intent key first
        winner = await find_run_by_intent(db, intent_key)
        if winner is None:
            raise ConcurrentUpdateError("Run creation conflicted; retry the request")
        logger.info("Lost race for intent %s, using run %s", intent_key, winner.id)
        return winner, False

    await db.refresh(run, attribute_names=["stops"])
    await log_activity(
        db, actor,
        action="run_created",
        entity_type="logistics_run",
        entity_id=run.id,
        entity_code=intent_key,
        summary=f"Created {kind} with {len(run.allocation_ids or [])} allocations",
    )
    logger.info("Created run %s for intent %s", run.id, intent_key)
    return run, True


async def eligible_allocation_ids(
    db: AsyncSession,
    *,
    job_id: str | None = None,
    visit_id: str | None = None,
    vehicle_id: str | None = None,
    location_id: str | None = None,
) -> list[str]:
    """Ids of non-released allocations matching the dispatch context."""
    stmt = select(StockAllocation.id).where(StockAllocation.status != "released")
    if job_id:
        stmt = stmt.where(StockAllocation.job_id == job_id)
    if visit_id:
        stmt = stmt.where(StockAllocation.visit_id == visit_id)
    if vehicle_id:
        stmt = stmt.where(StockAllocation.vehicle_id == vehicle_id)
    if location_id:
        stmt = stmt.where(StockAllocation.from_location_id == location_id)
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def dispatch_run_for_context(
    db: AsyncSession,
    actor: Actor,
    *,
    job_id: str | None = None,
    visit_id: str | None = None,
    vehicle_id: str | None = None,
    location_id: str | None = None,
    kind: str = DEFAULT_INTENT_KIND,
    assigned_to_user_id: str | None = None,
    assigned_to_name: str | None = None,
    scheduled_start: datetime | None = None,
    notes: str | None = None,
) -> tuple[LogisticsRun, bool]:
    """Collect the context's live allocations and get-or-create their run."""
    if not job_id and not visit_id:
        raise StockValidationError("A job_id or visit_id is required", field="job_id")

    allocation_ids = await eligible_allocation_ids(
        db, job_id=job_id, visit_id=visit_id,
        vehicle_id=vehicle_id, location_id=location_id,
    )
    if not allocation_ids:
        raise StockValidationError(
            "No active allocations to dispatch for this context", field="job_id"
        )

    intent_key = build_intent_key(
        kind, allocation_ids,
        visit_id=visit_id, vehicle_id=vehicle_id, location_id=location_id,
    )
    draft = RunDraft(
        job_id=job_id,
        visit_id=visit_id,
        vehicle_id=vehicle_id,
        location_id=location_id,
        assigned_to_user_id=assigned_to_user_id,
        assigned_to_name=assigned_to_name,
        scheduled_start=scheduled_start,
        notes=notes,
    )
    metadata = {
        "job_id": job_id,
        "visit_id": visit_id,
        "vehicle_id": vehicle_id,
        "location_id": location_id,
        "allocation_count": len(allocation_ids),
    }
    return await get_or_create_run(
        db, actor,
        intent_key=intent_key,
        kind=kind,
        metadata=metadata,
        draft=draft,
        allocation_ids=allocation_ids,
    )
