"""Quantity store + movement ledger tests."""

import pytest
from sqlalchemy import func, select, update

from app.middleware.exceptions import (
    ConcurrentUpdateError,
    InsufficientStockError,
    PermissionDeniedError,
    StockValidationError,
)
from app.models import InventoryQuantity, Location, PurchaseOrderLine, StockMovement
from app.services import stock_ledger


async def _movement_count(db) -> int:
    return (await db.execute(select(func.count(StockMovement.id)))).scalar_one()


@pytest.mark.unit
@pytest.mark.asyncio
class TestQuantityStore:

    async def test_missing_pair_reads_zero(self, db_session, item, warehouse):
        """A pair with no movements has a balance of 0."""
        assert await stock_ledger.get_quantity(db_session, item.id, warehouse.id) == 0

    async def test_balance_equals_signed_sum_of_movements(
        self, db_session, admin, item, warehouse,
    ):
        """Stored balance matches a replay of the ledger after mixed operations."""
        await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id, quantity=7,
        )
        await stock_ledger.adjust(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            delta=-3, reason="Damaged in storage",
        )
        await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id, quantity=5,
        )
        await stock_ledger.adjust(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            delta=2, reason="Found on shelf", source="correction",
        )

        stored = await stock_ledger.get_quantity(db_session, item.id, warehouse.id)
        replayed = await stock_ledger.recompute_balance(db_session, item.id, warehouse.id)
        assert stored == 11
        assert replayed == 11

    async def test_decrement_below_zero_is_rejected(self, db_session, admin, stocked, warehouse):
        """A decrement larger than the balance raises and changes nothing."""
        before = await _movement_count(db_session)

        with pytest.raises(InsufficientStockError) as exc_info:
            await stock_ledger.adjust(
                db_session, admin, sku_id=stocked.id, location_id=warehouse.id,
                delta=-11, reason="Write off",
            )

        assert exc_info.value.details["available"] == 10
        assert exc_info.value.details["requested"] == 11
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 10
        assert await _movement_count(db_session) == before

    async def test_decrement_on_empty_pair_creates_no_row(
        self, db_session, admin, item, warehouse,
    ):
        """Rejecting a decrement never leaves a zero balance row behind."""
        with pytest.raises(InsufficientStockError):
            await stock_ledger.adjust(
                db_session, admin, sku_id=item.id, location_id=warehouse.id,
                delta=-1, reason="Count",
            )
        rows = await db_session.execute(select(func.count(InventoryQuantity.id)))
        assert rows.scalar_one() == 0

    async def test_balance_row_persists_at_zero(self, db_session, admin, stocked, warehouse):
        """Emptying a location keeps its quantity row at 0."""
        await stock_ledger.adjust(
            db_session, admin, sku_id=stocked.id, location_id=warehouse.id,
            delta=-10, reason="Cycle count",
        )
        result = await db_session.execute(
            select(InventoryQuantity.quantity).where(
                InventoryQuantity.sku_id == stocked.id,
                InventoryQuantity.location_id == warehouse.id,
            )
        )
        assert result.scalar_one() == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransfer:

    async def test_transfer_moves_quantity_with_one_movement(
        self, db_session, admin, stocked, warehouse, van,
    ):
        """Source loses Q, destination gains Q, one transfer movement is written."""
        before = await _movement_count(db_session)

        movement = await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=4,
        )

        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 6
        assert await stock_ledger.get_quantity(db_session, stocked.id, van.id) == 4
        assert await _movement_count(db_session) == before + 1
        assert movement.source == "transfer"
        assert movement.from_location_id == warehouse.id
        assert movement.to_location_id == van.id
        assert movement.performed_by_name == admin.name

    async def test_transfer_rejects_insufficient_source(
        self, db_session, admin, stocked, warehouse, van,
    ):
        """Neither side changes when the source is short."""
        with pytest.raises(InsufficientStockError):
            await stock_ledger.transfer(
                db_session, admin, sku_id=stocked.id,
                from_location_id=warehouse.id, to_location_id=van.id, quantity=12,
            )
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 10
        assert await stock_ledger.get_quantity(db_session, stocked.id, van.id) == 0

    async def test_transfer_to_same_location_is_invalid(self, db_session, admin, stocked, warehouse):
        with pytest.raises(StockValidationError):
            await stock_ledger.transfer(
                db_session, admin, sku_id=stocked.id,
                from_location_id=warehouse.id, to_location_id=warehouse.id, quantity=1,
            )

    async def test_transfer_to_non_physical_location_is_invalid(
        self, db_session, admin, stocked, warehouse, supplier,
    ):
        with pytest.raises(StockValidationError):
            await stock_ledger.transfer(
                db_session, admin, sku_id=stocked.id,
                from_location_id=warehouse.id, to_location_id=supplier.id, quantity=1,
            )

    async def test_zero_quantity_is_invalid(self, db_session, admin, stocked, warehouse, van):
        with pytest.raises(StockValidationError):
            await stock_ledger.transfer(
                db_session, admin, sku_id=stocked.id,
                from_location_id=warehouse.id, to_location_id=van.id, quantity=0,
            )

    async def test_technician_may_load_own_van(
        self, db_session, technician, stocked, warehouse, van,
    ):
        await stock_ledger.transfer(
            db_session, technician, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=2,
        )
        assert await stock_ledger.get_quantity(db_session, stocked.id, van.id) == 2

    async def test_technician_may_not_load_another_van(
        self, db_session, technician, stocked, warehouse, van, other_van,
    ):
        with pytest.raises(PermissionDeniedError):
            await stock_ledger.transfer(
                db_session, technician, sku_id=stocked.id,
                from_location_id=warehouse.id, to_location_id=other_van.id, quantity=2,
            )


@pytest.mark.unit
@pytest.mark.asyncio
class TestProjections:

    async def test_on_hand_excludes_non_physical_locations(
        self, db_session, admin, stocked, warehouse, van, supplier,
    ):
        """Balances at supplier or inactive locations do not count as on-hand."""
        await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=3,
        )
        # A stray balance at a supplier location, as imported from legacy data
        db_session.add(InventoryQuantity(
            sku_id=stocked.id, location_id=supplier.id, quantity=50,
        ))
        await db_session.flush()
        assert await stock_ledger.on_hand(db_session, stocked.id) == 10

        van_row = await db_session.get(Location, van.id)
        van_row.is_active = False
        await db_session.flush()
        assert await stock_ledger.on_hand(db_session, stocked.id) == 7

    async def test_inbound_is_open_po_remainder(self, db_session, admin, item, warehouse):
        """Receiving against a PO line reduces inbound and closes the line when complete."""
        line = PurchaseOrderLine(purchase_order_id="PO-1", sku_id=item.id, qty_ordered=8)
        closed = PurchaseOrderLine(
            purchase_order_id="PO-0", sku_id=item.id, qty_ordered=5, status="closed",
        )
        db_session.add_all([line, closed])
        await db_session.flush()
        assert await stock_ledger.inbound(db_session, item.id) == 8

        movement = await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=5, purchase_order_line_id=line.id,
        )
        assert movement.reference_type == "purchase_order"
        assert movement.reference_id == "PO-1"
        assert await stock_ledger.inbound(db_session, item.id) == 3

        await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=3, purchase_order_line_id=line.id,
        )
        assert await stock_ledger.inbound(db_session, item.id) == 0
        assert line.status == "closed"

    async def test_receipt_replay_after_line_closed(self, db_session, admin, item, warehouse):
        """Retrying the delivery that closed a PO line returns the first movement."""
        line = PurchaseOrderLine(purchase_order_id="PO-2", sku_id=item.id, qty_ordered=5)
        db_session.add(line)
        await db_session.flush()

        first = await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=5, purchase_order_line_id=line.id, idempotency_key="RCV-1",
        )
        assert line.status == "closed"

        again = await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=5, purchase_order_line_id=line.id, idempotency_key="RCV-1",
        )
        assert again.id == first.id
        assert line.qty_received == 5
        assert await stock_ledger.get_quantity(db_session, item.id, warehouse.id) == 5

    async def test_stock_snapshot(self, db_session, admin, stocked, warehouse, van):
        await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=4,
        )
        snapshot = await stock_ledger.stock_snapshot(db_session, stocked.id)
        assert snapshot["on_hand"] == 10
        assert snapshot["inbound"] == 0
        by_location = {loc["location_id"]: loc["quantity"] for loc in snapshot["locations"]}
        assert by_location == {warehouse.id: 6, van.id: 4}


@pytest.mark.unit
@pytest.mark.asyncio
class TestMovementLedger:

    async def test_history_is_newest_first(self, db_session, admin, stocked, warehouse, van):
        await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=1,
        )
        await stock_ledger.adjust(
            db_session, admin, sku_id=stocked.id, location_id=van.id,
            delta=-1, reason="Used for testing",
        )

        movements = await stock_ledger.history(db_session, stocked.id)
        assert [m.source for m in movements] == ["adjustment", "transfer", "receipt"]

        van_only = await stock_ledger.history(db_session, stocked.id, location_id=van.id)
        assert len(van_only) == 2

    async def test_idempotency_key_replay_applies_once(
        self, db_session, admin, item, warehouse,
    ):
        first = await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=6, idempotency_key="delivery-42",
        )
        again = await stock_ledger.receive(
            db_session, admin, sku_id=item.id, location_id=warehouse.id,
            quantity=6, idempotency_key="delivery-42",
        )
        assert again.id == first.id
        assert await stock_ledger.get_quantity(db_session, item.id, warehouse.id) == 6

    async def test_adjustment_requires_reason(self, db_session, admin, stocked, warehouse):
        with pytest.raises(StockValidationError):
            await stock_ledger.adjust(
                db_session, admin, sku_id=stocked.id, location_id=warehouse.id,
                delta=1, reason="   ",
            )

    async def test_movements_are_append_only(self, db_session, stocked):
        movement = (await stock_ledger.history(db_session, stocked.id))[0]
        movement.notes = "edited"
        with pytest.raises(ValueError):
            await db_session.flush()


@pytest.mark.unit
@pytest.mark.asyncio
class TestConcurrentWrites:

    async def test_lost_first_insert_uses_winning_row(
        self, db_session, admin, stocked, warehouse, monkeypatch,
    ):
        """If the row appears between lookup and insert, the delta lands on that row."""
        real_lock = stock_ledger._lock_quantity
        calls = []

        async def stale_lock(db, sku_id, location_id):
            calls.append(location_id)
            if len(calls) == 1:
                return None
            return await real_lock(db, sku_id, location_id)

        monkeypatch.setattr(stock_ledger, "_lock_quantity", stale_lock)

        await stock_ledger.receive(
            db_session, admin, sku_id=stocked.id, location_id=warehouse.id, quantity=3,
        )

        assert len(calls) == 2
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 13
        rows = await db_session.execute(
            select(func.count(InventoryQuantity.id)).where(
                InventoryQuantity.sku_id == stocked.id,
            )
        )
        assert rows.scalar_one() == 1
        assert await stock_ledger.recompute_balance(db_session, stocked.id, warehouse.id) == 13

    async def test_stale_version_raises_concurrent_update(
        self, db_session, admin, stocked, warehouse, monkeypatch,
    ):
        """Another writer bumping the row after our lock makes the flush fail cleanly."""
        real_lock = stock_ledger._lock_quantity
        sku_id, warehouse_id = stocked.id, warehouse.id
        before = await _movement_count(db_session)

        async def lock_then_bump(db, sku_id, location_id):
            row = await real_lock(db, sku_id, location_id)
            table = InventoryQuantity.__table__
            await db.execute(
                update(table)
                .where(table.c.id == row.id)
                .values(version=table.c.version + 1)
            )
            return row

        monkeypatch.setattr(stock_ledger, "_lock_quantity", lock_then_bump)

        with pytest.raises(ConcurrentUpdateError):
            await stock_ledger.adjust(
                db_session, admin, sku_id=sku_id, location_id=warehouse_id,
                delta=-2, reason="Cycle count",
            )

        monkeypatch.undo()
        assert await stock_ledger.get_quantity(db_session, sku_id, warehouse_id) == 10
        assert await _movement_count(db_session) == before
