"""Location registry tests: the physical predicate, lookups and integrity scan."""

import pytest

from app.models import InventoryQuantity, Location
from app.services import locations
from app.middleware.exceptions import ResourceNotFoundError, StockValidationError


@pytest.mark.unit
class TestLocationType:

    @pytest.mark.parametrize("raw, expected", [
        ("warehouse", "warehouse"),
        ("  Warehouse ", "warehouse"),
        ("Vehicle ", "vehicle"),
        ("SUPPLIER", "supplier"),
        ("in_transit", "in_transit"),
        ("", "other"),
        (None, "other"),
        ("garage", "other"),
    ])
    def test_normalize(self, raw, expected):
        assert locations.normalize_location_type(raw) == expected

    def test_inactive_warehouse_is_not_physical(self):
        location = Location(name="Old Depot", type="warehouse", is_active=False)
        assert not locations.is_physical(location)

    def test_untidy_vehicle_type_is_physical(self):
        location = Location(name="Van", type=" VEHICLE", is_active=True)
        assert locations.is_physical(location)


@pytest.mark.unit
@pytest.mark.asyncio
class TestLocationLookups:

    async def test_list_physical_puts_warehouses_first(
        self, db_session, van, other_van, warehouse, supplier,
    ):
        """Supplier locations are left out; untidy vehicle types are kept."""
        result = await locations.list_physical(db_session)
        assert [loc.id for loc in result] == [warehouse.id, van.id, other_van.id]

    async def test_require_physical_rejects_supplier(self, db_session, supplier):
        with pytest.raises(StockValidationError) as exc_info:
            await locations.require_physical_location(db_session, supplier.id, "to_location_id")
        assert exc_info.value.details["field"] == "to_location_id"

    async def test_unknown_location(self, db_session):
        with pytest.raises(ResourceNotFoundError):
            await locations.get_location(db_session, "missing")

    async def test_default_warehouse(self, db_session, van, warehouse):
        assert (await locations.default_warehouse(db_session)).id == warehouse.id

    async def test_no_default_warehouse(self, db_session, van):
        assert await locations.default_warehouse(db_session) is None

    async def test_vehicle_location(self, db_session, van, other_van):
        """Vehicle lookups match on vehicle id, tolerating untidy type text."""
        assert (await locations.vehicle_location(db_session, "VAN-1")).id == van.id
        assert (await locations.vehicle_location(db_session, "VAN-2")).id == other_van.id
        assert await locations.vehicle_location(db_session, "VAN-9") is None
        assert await locations.vehicle_location(db_session, None) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestLocationIntegrity:

    async def test_healthy_registry(self, db_session, warehouse, van, other_van):
        report = await locations.check_location_integrity(db_session)
        assert report.ok
        assert report.warehouse_count == 1
        assert report.vehicle_location_count == 2

    async def test_missing_warehouse_is_an_error(self, db_session, van):
        report = await locations.check_location_integrity(db_session)
        assert not report.ok
        assert report.warehouse_count == 0
        assert any("warehouse" in error for error in report.errors)

    async def test_duplicate_vehicle_locations(self, db_session, warehouse, van):
        """Two active locations for one vehicle are reported, not repaired."""
        duplicate = Location(name="Van 1 (spare)", type="vehicle", vehicle_id="VAN-1")
        db_session.add(duplicate)
        await db_session.flush()

        report = await locations.check_location_integrity(db_session)
        assert not report.ok
        assert report.duplicate_vehicle_locations == {
            "VAN-1": sorted([van.id, duplicate.id]),
        }

    async def test_stranded_stock_is_a_warning(self, db_session, warehouse, supplier, item):
        db_session.add(InventoryQuantity(
            sku_id=item.id, location_id=supplier.id, quantity=4, item_name=item.name,
        ))
        await db_session.flush()

        report = await locations.check_location_integrity(db_session)
        assert report.ok
        assert report.stranded_stock == [{
            "location_id": supplier.id,
            "location_name": "Acme Supply",
            "sku_id": item.id,
            "quantity": 4,
        }]
        assert len(report.warnings) == 1
        assert report.as_dict()["stranded_stock"][0]["quantity"] == 4
