"""Requirement / allocation / consumption engine tests."""

import pytest
from sqlalchemy import func, select

from app.middleware.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
    OverAllocationError,
    OverConsumptionError,
    PermissionDeniedError,
    StockValidationError,
)
from app.models import StockAllocation, StockMovement
from app.services import allocations, stock_ledger


async def _requirement(db, actor, item, qty=10, **kwargs):
    return await allocations.create_requirement(
        db, actor, project_id="P1", sku_id=item.id, qty_required=qty, **kwargs
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestRequirements:

    async def test_item_or_description_not_both(self, db_session, admin, item):
        with pytest.raises(StockValidationError):
            await allocations.create_requirement(
                db_session, admin, project_id="P1", qty_required=1,
                sku_id=item.id, description="Patch leads",
            )
        with pytest.raises(StockValidationError):
            await allocations.create_requirement(
                db_session, admin, project_id="P1", qty_required=1,
            )

    async def test_negative_quantity_is_invalid(self, db_session, admin, item):
        with pytest.raises(StockValidationError):
            await _requirement(db_session, admin, item, qty=-1)

    async def test_zero_quantity_and_free_text_are_allowed(self, db_session, admin):
        line = await allocations.create_requirement(
            db_session, admin, project_id="P1", qty_required=0,
            description="  Cable ties  ", priority="nice_to_have",
        )
        assert line.description == "Cable ties"
        assert line.sku_id is None
        assert line.status == "active"

    async def test_cannot_reduce_below_allocated(self, db_session, admin, item):
        line = await _requirement(db_session, admin, item, qty=10)
        await allocations.allocate(
            db_session, admin, job_id="J1", requirement_id=line.id, qty=6,
        )
        with pytest.raises(StockValidationError):
            await allocations.update_requirement(db_session, admin, line.id, qty_required=5)

        updated = await allocations.update_requirement(
            db_session, admin, line.id, qty_required=6, is_blocking=True,
        )
        assert updated.qty_required == 6
        assert updated.is_blocking is True

    async def test_remove_requires_no_active_allocations(self, db_session, admin, item):
        line = await _requirement(db_session, admin, item)
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", requirement_id=line.id, qty=2,
        )
        with pytest.raises(StockValidationError):
            await allocations.remove_requirement(db_session, admin, line.id)

        await allocations.advance_allocation(db_session, admin, allocation.id, "released")
        removed = await allocations.remove_requirement(db_session, admin, line.id)
        assert removed.status == "removed"

        with pytest.raises(StockValidationError):
            await allocations.allocate(
                db_session, admin, job_id="J1", requirement_id=line.id, qty=1,
            )


@pytest.mark.unit
@pytest.mark.asyncio
class TestAllocate:

    async def test_over_allocation_is_blocked_until_released(
        self, db_session, admin, stocked,
    ):
        """Required 10: 4 fits, 7 more does not, and after releasing the 4 it does."""
        line = await _requirement(db_session, admin, stocked, qty=10)
        first = await allocations.allocate(
            db_session, admin, job_id="J1", requirement_id=line.id, qty=4,
        )
        assert first.status == "reserved"
        assert first.project_id == "P1"
        assert first.sku_id == stocked.id

        with pytest.raises(OverAllocationError) as exc_info:
            await allocations.allocate(
                db_session, admin, job_id="J1", requirement_id=line.id, qty=7,
            )
        assert exc_info.value.required == 10
        assert exc_info.value.attempted_total == 11
        assert exc_info.value.details["override_allowed"] is True

        count = await db_session.execute(select(func.count(StockAllocation.id)))
        assert count.scalar_one() == 1

        await allocations.advance_allocation(db_session, admin, first.id, "released")
        assert await allocations.active_allocated_sum(db_session, line.id) == 0

        second = await allocations.allocate(
            db_session, admin, job_id="J1", requirement_id=line.id, qty=7,
        )
        assert second.override is False
        assert await allocations.active_allocated_sum(db_session, line.id) == 7

    async def test_allocation_does_not_move_stock(self, db_session, admin, stocked, warehouse):
        line = await _requirement(db_session, admin, stocked)
        await allocations.allocate(
            db_session, admin, job_id="J1", requirement_id=line.id, qty=5,
            from_location_id=warehouse.id,
        )
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 10

    async def test_override_by_manager_stores_note(self, db_session, admin, manager, item):
        line = await _requirement(db_session, admin, item, qty=2)
        allocation = await allocations.allocate(
            db_session, manager, job_id="J1", requirement_id=line.id, qty=3,
            allow_override=True, override_note="Spare for breakages",
        )
        assert allocation.override is True
        assert allocation.override_note == "Spare for breakages"
        assert allocation.allocated_by_id == manager.id

    async def test_override_requires_note(self, db_session, admin, item):
        line = await _requirement(db_session, admin, item, qty=2)
        with pytest.raises(StockValidationError) as exc_info:
            await allocations.allocate(
                db_session, admin, job_id="J1", requirement_id=line.id, qty=3,
                allow_override=True, override_note="  ",
            )
        assert exc_info.value.field == "override_note"

    async def test_technician_cannot_override(self, db_session, admin, technician, item):
        line = await _requirement(db_session, admin, item, qty=2)
        with pytest.raises(PermissionDeniedError):
            await allocations.allocate(
                db_session, technician, job_id="J1", requirement_id=line.id, qty=3,
                allow_override=True, override_note="Need extra",
            )

    async def test_ad_hoc_allocation(self, db_session, admin):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J2", qty=1, description="Wall plate",
        )
        assert allocation.requirement_id is None
        assert allocation.description == "Wall plate"

    async def test_zero_quantity_is_invalid(self, db_session, admin, item):
        with pytest.raises(StockValidationError):
            await allocations.allocate(db_session, admin, job_id="J1", qty=0, sku_id=item.id)


@pytest.mark.unit
@pytest.mark.asyncio
class TestAllocationLifecycle:

    async def test_reserved_to_loaded_to_released(self, db_session, admin, item):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=1, sku_id=item.id,
        )
        loaded = await allocations.advance_allocation(db_session, admin, allocation.id, "loaded")
        assert loaded.status == "loaded"
        assert loaded.status_changed_at is not None

        released = await allocations.advance_allocation(
            db_session, admin, allocation.id, "released",
        )
        assert released.status == "released"

    async def test_loaded_cannot_go_back(self, db_session, admin, item):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=1, sku_id=item.id,
        )
        await allocations.advance_allocation(db_session, admin, allocation.id, "loaded")
        with pytest.raises(InvalidTransitionError):
            await allocations.advance_allocation(db_session, admin, allocation.id, "reserved")

    async def test_released_is_terminal(self, db_session, admin, item):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=1, sku_id=item.id,
        )
        await allocations.advance_allocation(db_session, admin, allocation.id, "released")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await allocations.advance_allocation(db_session, admin, allocation.id, "loaded")
        assert exc_info.value.details["allowed"] == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestConsume:

    async def test_consume_against_allocation_takes_stock(
        self, db_session, admin, stocked, warehouse,
    ):
        """Usage leaves through a job_usage movement at the allocation's source."""
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=5, sku_id=stocked.id,
            from_location_id=warehouse.id,
        )
        consumption = await allocations.consume(
            db_session, admin, job_id="J1", qty=3, allocation_id=allocation.id,
        )

        assert consumption.location_id == warehouse.id
        assert consumption.sku_id == stocked.id
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 7

        movement = await db_session.get(StockMovement, consumption.movement_id)
        assert movement.source == "job_usage"
        assert movement.reference_id == "J1"
        assert await allocations.consumed_sum(db_session, allocation.id) == 3

    async def test_consume_falls_back_to_vehicle_location(
        self, db_session, admin, stocked, warehouse, van,
    ):
        await stock_ledger.transfer(
            db_session, admin, sku_id=stocked.id,
            from_location_id=warehouse.id, to_location_id=van.id, quantity=4,
        )
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=4, sku_id=stocked.id, vehicle_id="VAN-1",
        )
        consumption = await allocations.consume(
            db_session, admin, job_id="J1", qty=2, allocation_id=allocation.id,
        )
        assert consumption.location_id == van.id
        assert await stock_ledger.get_quantity(db_session, stocked.id, van.id) == 2

    async def test_over_consumption_is_blocked(self, db_session, admin, stocked):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=2, sku_id=stocked.id,
        )
        await allocations.consume(
            db_session, admin, job_id="J1", qty=2, allocation_id=allocation.id,
        )
        with pytest.raises(OverConsumptionError) as exc_info:
            await allocations.consume(
                db_session, admin, job_id="J1", qty=1, allocation_id=allocation.id,
            )
        assert exc_info.value.remaining == 0

        extra = await allocations.consume(
            db_session, admin, job_id="J1", qty=1, allocation_id=allocation.id,
            allow_override=True, override_note="Extra run to the comms room",
        )
        assert extra.override is True

    async def test_consume_from_released_allocation_is_rejected(self, db_session, admin, stocked):
        allocation = await allocations.allocate(
            db_session, admin, job_id="J1", qty=2, sku_id=stocked.id,
        )
        await allocations.advance_allocation(db_session, admin, allocation.id, "released")
        with pytest.raises(InvalidTransitionError):
            await allocations.consume(
                db_session, admin, job_id="J1", qty=1, allocation_id=allocation.id,
            )

    async def test_consume_replay_deducts_once(self, db_session, admin, stocked, warehouse):
        first = await allocations.consume(
            db_session, admin, job_id="J1", qty=2, sku_id=stocked.id,
            location_id=warehouse.id, consumption_id="usage-1",
        )
        again = await allocations.consume(
            db_session, admin, job_id="J1", qty=2, sku_id=stocked.id,
            location_id=warehouse.id, consumption_id="usage-1",
        )
        assert again.id == first.id
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 8

    async def test_consume_more_than_on_hand(self, db_session, admin, stocked, warehouse):
        with pytest.raises(InsufficientStockError):
            await allocations.consume(
                db_session, admin, job_id="J1", qty=11, sku_id=stocked.id,
                location_id=warehouse.id,
            )
        assert await stock_ledger.get_quantity(db_session, stocked.id, warehouse.id) == 10

    async def test_description_only_usage_moves_no_stock(self, db_session, admin, warehouse):
        consumption = await allocations.consume(
            db_session, admin, job_id="J1", qty=3, description="Cable clips",
        )
        assert consumption.movement_id is None
        assert consumption.location_id is None
        count = await db_session.execute(select(func.count(StockMovement.id)))
        assert count.scalar_one() == 0
