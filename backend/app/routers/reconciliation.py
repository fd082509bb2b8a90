"""Reconciliation router — balance integrity alerts and manual trigger.

Endpoints:
    POST  /run                 Trigger a reconciliation run
    GET   /alerts              List alerts with filters
    PATCH /alerts/{alert_id}   Update alert status (acknowledge / resolve / dismiss)
    GET   /balance             Stored balance vs. ledger replay for one pair

Reading requires reconciliation.read; the trigger and status updates
require reconciliation.write.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.reconciliation_alert import ReconciliationAlert
from app.schemas.inventory import BalanceCheckOut
from app.schemas.reconciliation import AlertOut, AlertUpdate, RunSummary
from app.services.reconciliation import run_full_reconciliation
from app.services.stock_ledger import get_quantity, recompute_balance
from app.utils.activity import log_activity

router = APIRouter()


# ── Trigger a reconciliation run ─────────────────────────────

@router.post("/run", response_model=RunSummary, status_code=status.HTTP_201_CREATED)
async def trigger_run(
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("reconciliation.write")),
):
    """Manually trigger a full reconciliation run. Previous open alerts
    that no longer appear are auto-resolved."""
    summary = await run_full_reconciliation(db)
    return RunSummary(**summary)


# ── List alerts with filters ─────────────────────────────────

@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(
    alert_type: str | None = Query(None, description="Filter by alert_type"),
    severity: str | None = Query(None, description="Filter by severity"),
    alert_status: str | None = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("reconciliation.read")),
):
    stmt = (
        select(ReconciliationAlert)
        .where(ReconciliationAlert.is_deleted == False)  # noqa: E712
    )

    if alert_type:
        stmt = stmt.where(ReconciliationAlert.alert_type == alert_type)
    if severity:
        stmt = stmt.where(ReconciliationAlert.severity == severity)
    if alert_status:
        stmt = stmt.where(ReconciliationAlert.status == alert_status)

    stmt = (
        stmt
        .order_by(ReconciliationAlert.created_at.desc())
        .limit(limit)
        .offset(offset)
    )

    result = await db.execute(stmt)
    return result.scalars().all()


# ── Update alert status ──────────────────────────────────────

@router.patch("/alerts/{alert_id}", response_model=AlertOut)
async def update_alert(
    alert_id: str,
    body: AlertUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("reconciliation.write")),
):
    """Acknowledge, resolve, or dismiss an alert."""
    result = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.id == alert_id,
            ReconciliationAlert.is_deleted == False,  # noqa: E712
        )
    )
    alert = result.scalar_one_or_none()
    if not alert:
        raise ResourceNotFoundError("Alert", alert_id)

    previous = alert.status
    alert.status = body.status
    if body.resolution_note:
        alert.resolution_note = body.resolution_note
    if body.status in ("resolved", "dismissed"):
        alert.resolved_at = datetime.utcnow()
        alert.resolved_by = actor.id

    await db.flush()
    await log_activity(
        db, actor,
        action="status_changed",
        entity_type="reconciliation_alert",
        entity_id=alert.id,
        summary=f"Alert {previous} → {body.status}",
    )
    return alert


# ── Single-pair balance check ────────────────────────────────

@router.get("/balance", response_model=BalanceCheckOut)
async def check_balance(
    sku_id: str = Query(...),
    location_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("reconciliation.read")),
):
    stored = await get_quantity(db, sku_id, location_id)
    replayed = await recompute_balance(db, sku_id, location_id)
    return BalanceCheckOut(
        sku_id=sku_id,
        location_id=location_id,
        stored=stored,
        replayed=replayed,
        matches=stored == replayed,
    )
