"""Reconciliation tests: ledger replay vs. stored balances, alerts and endpoints."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from app.models import InventoryQuantity, ReconciliationAlert
from app.services import stock_ledger
from app.services.reconciliation import (
    _safe_pct,
    _severity,
    check_balances,
    run_full_reconciliation,
)


async def _tamper(db, sku_id: str, location_id: str, quantity: int) -> None:
    """Write a balance directly, bypassing the ledger."""
    await db.execute(
        update(InventoryQuantity)
        .where(
            InventoryQuantity.sku_id == sku_id,
            InventoryQuantity.location_id == location_id,
        )
        .values(quantity=quantity)
    )


@pytest.mark.unit
class TestSeverity:

    def test_severity_bands(self):
        assert _severity(25) == "critical"
        assert _severity(12) == "high"
        assert _severity(5) == "medium"
        assert _severity(1) == "low"
        assert _severity(0) == "low"

    def test_safe_pct_with_zero_expected(self):
        assert _safe_pct(0, 0) == 0.0
        assert _safe_pct(0, 3) == 100.0
        assert _safe_pct(10, 15) == 50.0


@pytest.mark.unit
@pytest.mark.asyncio
class TestBalanceChecks:

    async def test_consistent_ledger_has_no_mismatches(
        self, db_session, admin, stocked, warehouse, van,
    ):
        await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=3,
        )
        assert await check_balances(db_session) == []

    async def test_direct_write_is_detected(self, db_session, stocked, warehouse):
        await _tamper(db_session, stocked.id, warehouse.id, 15)

        mismatches = await check_balances(db_session)
        assert len(mismatches) == 1
        mismatch = mismatches[0]
        assert mismatch.location_id == warehouse.id
        assert mismatch.stored == 15
        assert mismatch.replayed == 10
        assert mismatch.variance == 5

    async def test_run_records_alert_without_correcting(self, db_session, stocked, warehouse):
        """A mismatch becomes an open alert; the stored balance is left alone."""
        await _tamper(db_session, stocked.id, warehouse.id, 15)

        summary = await run_full_reconciliation(db_session)
        assert summary["total_alerts"] == 1
        assert summary["by_type"] == {"balance_mismatch": 1}
        assert summary["by_severity"] == {"critical": 1}

        result = await db_session.execute(select(ReconciliationAlert))
        alert = result.scalar_one()
        assert alert.status == "open"
        assert alert.expected_value == 10
        assert alert.actual_value == 15
        assert alert.entity_refs == {"sku_id": stocked.id, "location_id": warehouse.id}
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 15

    async def test_fixed_mismatch_is_auto_resolved(self, db_session, stocked, warehouse):
        await _tamper(db_session, stocked.id, warehouse.id, 15)
        await run_full_reconciliation(db_session)

        await _tamper(db_session, stocked.id, warehouse.id, 10)
        summary = await run_full_reconciliation(db_session)
        assert summary["total_alerts"] == 0

        result = await db_session.execute(select(ReconciliationAlert))
        alert = result.scalar_one()
        assert alert.status == "resolved"
        assert alert.resolved_at is not None

    async def test_missing_warehouse_raises_location_alert(self, db_session, van):
        summary = await run_full_reconciliation(db_session)
        assert summary["by_type"] == {"location_integrity": 1}


@pytest.mark.api
@pytest.mark.asyncio
class TestReconciliationEndpoints:
    """Reconciliation endpoints require authentication and permissions."""

    async def test_run_requires_auth(self, client: AsyncClient):
        """Reconciliation run rejects unauthenticated requests."""
        resp = await client.post("/api/reconciliation/run")
        assert resp.status_code == 401

    async def test_alerts_list_requires_auth(self, client: AsyncClient):
        """Alerts list rejects unauthenticated requests."""
        resp = await client.get("/api/reconciliation/alerts")
        assert resp.status_code == 401

    async def test_alert_update_requires_auth(self, client: AsyncClient):
        """Alert update rejects unauthenticated requests."""
        resp = await client.patch(
            "/api/reconciliation/alerts/fake-id",
            json={"status": "acknowledged"},
        )
        assert resp.status_code == 401

    async def test_technician_cannot_read_alerts(
        self, client: AsyncClient, technician_headers,
    ):
        resp = await client.get("/api/reconciliation/alerts", headers=technician_headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "HTTP_403"

    async def test_run_and_acknowledge(
        self, client: AsyncClient, auth_headers, db_session, stocked, warehouse,
    ):
        """Trigger a run, list the alert, then acknowledge it."""
        await _tamper(db_session, stocked.id, warehouse.id, 12)

        resp = await client.post("/api/reconciliation/run", headers=auth_headers)
        assert resp.status_code == 201
        assert resp.json()["total_alerts"] == 1

        resp = await client.get(
            "/api/reconciliation/alerts",
            params={"alert_type": "balance_mismatch", "status": "open"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        alerts = resp.json()
        assert len(alerts) == 1
        assert alerts[0]["variance"] == 2

        resp = await client.patch(
            f"/api/reconciliation/alerts/{alerts[0]['id']}",
            json={"status": "acknowledged", "resolution_note": "Counting tomorrow"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "acknowledged"

    async def test_unknown_alert(self, client: AsyncClient, auth_headers):
        resp = await client.patch(
            "/api/reconciliation/alerts/missing",
            json={"status": "resolved"},
            headers=auth_headers,
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_balance_check(
        self, client: AsyncClient, auth_headers, db_session, stocked, warehouse,
    ):
        resp = await client.get(
            "/api/reconciliation/balance",
            params={"sku_id": stocked.id, "location_id": warehouse.id},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["stored"] == 10
        assert body["replayed"] == 10
        assert body["matches"] is True
