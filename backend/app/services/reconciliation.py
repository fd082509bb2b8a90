"""Reconciliation service — detects stored balances that disagree with the ledger.

The quantity table is the fast path; the movement ledger is the source of
truth. ``check_balances`` replays the ledger for every (SKU, location)
pair and reports each pair whose stored quantity differs. Mismatches are
never auto-corrected: they are logged at error level and persisted as
ReconciliationAlert rows for an operator to review (a fix is a
correction movement).

Each check_* function returns a list of ReconciliationAlert objects
(unsaved). ``run_full_reconciliation`` orchestrates all checks in a
single pass, persists the alerts, and returns a run summary.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.movement import StockMovement
from app.models.quantity import InventoryQuantity
from app.models.reconciliation_alert import ReconciliationAlert
from app.services.locations import check_location_integrity

logger = logging.getLogger(__name__)


@dataclass
class IntegrityMismatch:
    """Stored quantity vs. ledger replay for one pair."""
    sku_id: str
    location_id: str
    stored: int
    replayed: int
    item_name: str | None = None
    location_name: str | None = None

    @property
    def variance(self) -> int:
        return self.stored - self.replayed


def _severity(variance_pct: float) -> str:
    """Map variance percentage to severity level."""
    abs_pct = abs(variance_pct) if variance_pct else 0
    if abs_pct >= 20:
        return "critical"
    if abs_pct >= 10:
        return "high"
    if abs_pct >= 5:
        return "medium"
    return "low"


def _safe_pct(expected: float, actual: float) -> float:
    """Calculate percentage variance safely."""
    if not expected:
        return 100.0 if actual else 0.0
    return round(abs(actual - expected) / abs(expected) * 100, 2)


# ─────────────────────────────────────────────────────────────
# CHECK 1:  stored quantity  ≠  signed sum of movements
# ─────────────────────────────────────────────────────────────

async def check_balances(db: AsyncSession) -> list[IntegrityMismatch]:
    """Replay the whole ledger in two grouped queries and compare."""
    replayed: dict[tuple[str, str], int] = {}

    incoming = await db.execute(
        select(
            StockMovement.sku_id,
            StockMovement.to_location_id,
            func.sum(StockMovement.quantity),
        )
        .where(StockMovement.to_location_id.is_not(None))
        .group_by(StockMovement.sku_id, StockMovement.to_location_id)
    )
    for sku_id, location_id, total in incoming.all():
        replayed[(sku_id, location_id)] = replayed.get((sku_id, location_id), 0) + int(total)

    outgoing = await db.execute(
        select(
            StockMovement.sku_id,
            StockMovement.from_location_id,
            func.sum(StockMovement.quantity),
        )
        .where(StockMovement.from_location_id.is_not(None))
        .group_by(StockMovement.sku_id, StockMovement.from_location_id)
    )
    for sku_id, location_id, total in outgoing.all():
        replayed[(sku_id, location_id)] = replayed.get((sku_id, location_id), 0) - int(total)

    stored_rows = await db.execute(select(InventoryQuantity))
    stored = {(q.sku_id, q.location_id): q for q in stored_rows.scalars().all()}

    mismatches = []
    for key in sorted(set(replayed) | set(stored)):
        row = stored.get(key)
        stored_qty = row.quantity if row is not None else 0
        replay_qty = replayed.get(key, 0)
        if stored_qty == replay_qty:
            continue
        mismatches.append(IntegrityMismatch(
            sku_id=key[0],
            location_id=key[1],
            stored=stored_qty,
            replayed=replay_qty,
            item_name=row.item_name if row is not None else None,
            location_name=row.location_name if row is not None else None,
        ))
    return mismatches


async def check_balance_mismatches(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    alerts = []
    for mismatch in await check_balances(db):
        label = f"{mismatch.item_name or mismatch.sku_id} @ {mismatch.location_name or mismatch.location_id}"
        logger.error(
            "Balance mismatch for %s: stored %s, ledger %s",
            label, mismatch.stored, mismatch.replayed,
        )
        pct = _safe_pct(mismatch.replayed, mismatch.stored)
        alerts.append(ReconciliationAlert(
            alert_type="balance_mismatch",
            severity=_severity(pct),
            title=f"{label}: stored balance ≠ movement ledger",
            description=(
                f"Stored quantity is {mismatch.stored} but the movement ledger "
                f"sums to {mismatch.replayed} (variance {mismatch.variance:+d})."
            ),
            expected_value=mismatch.replayed,
            actual_value=mismatch.stored,
            variance=mismatch.variance,
            variance_pct=pct,
            unit="units",
            entity_refs={"sku_id": mismatch.sku_id, "location_id": mismatch.location_id},
            run_id=run_id,
        ))
    return alerts


# ─────────────────────────────────────────────────────────────
# CHECK 2:  location registry inconsistencies
# ─────────────────────────────────────────────────────────────

async def check_location_registry(db: AsyncSession, run_id: str) -> list[ReconciliationAlert]:
    report = await check_location_integrity(db)
    alerts = []
    for message in report.errors:
        logger.error("Location integrity: %s", message)
        alerts.append(ReconciliationAlert(
            alert_type="location_integrity",
            severity="high",
            title="Location registry inconsistent",
            description=message,
            run_id=run_id,
        ))
    for stranded in report.stranded_stock:
        alerts.append(ReconciliationAlert(
            alert_type="location_integrity",
            severity="medium",
            title=f"Stock held at non-physical location {stranded['location_name']}",
            description=(
                f"{stranded['quantity']} units are recorded at a location that "
                f"on-hand totals do not include."
            ),
            actual_value=stranded["quantity"],
            unit="units",
            entity_refs={
                "sku_id": stranded["sku_id"],
                "location_id": stranded["location_id"],
            },
            run_id=run_id,
        ))
    return alerts


# ─────────────────────────────────────────────────────────────
# ORCHESTRATOR:  Run all checks in one pass
# ─────────────────────────────────────────────────────────────

async def run_full_reconciliation(db: AsyncSession) -> dict:
    """Execute all reconciliation checks, persist alerts, return summary.

    Returns:
        {
            "run_id": "...",
            "ran_at": "...",
            "total_alerts": int,
            "by_type": {"balance_mismatch": int, ...},
            "by_severity": {"critical": int, "high": int, ...},
        }
    """
    run_id = str(uuid.uuid4())

    # Auto-resolve stale open alerts from previous runs
    # (if a mismatch no longer appears, it was fixed)
    old_open = await db.execute(
        select(ReconciliationAlert).where(
            ReconciliationAlert.status == "open",
            ReconciliationAlert.run_id != run_id,
        )
    )
    for old_alert in old_open.scalars().all():
        old_alert.status = "resolved"
        old_alert.resolution_note = "Auto-resolved: mismatch no longer detected"
        old_alert.resolved_at = datetime.utcnow()
    await db.flush()

    all_alerts: list[ReconciliationAlert] = []

    checks = [
        check_balance_mismatches,
        check_location_registry,
    ]

    for check_fn in checks:
        alerts = await check_fn(db, run_id)
        all_alerts.extend(alerts)

    for alert in all_alerts:
        db.add(alert)
    await db.flush()

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for a in all_alerts:
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
        by_severity[a.severity] = by_severity.get(a.severity, 0) + 1

    return {
        "run_id": run_id,
        "ran_at": datetime.utcnow().isoformat(),
        "total_alerts": len(all_alerts),
        "by_type": by_type,
        "by_severity": by_severity,
    }
