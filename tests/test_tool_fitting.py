"""
Test Tool Fitting Command

Tests for:
- Available components for an asset (instances + site stock)
- Site stock reservation and compensation for type-only fits
- Undo returns stock
- Asset-day lock
"""

import pytest
from datetime import date, datetime

from models.drilling_tools import AssetKind, site_stock_id
from models.installation import ByInstance, ByTypeOnly, FitRequest, RemoveRequest
from services.asset_locks import AssetDayLock
from services.errors import ConflictError, NotFoundError, ValidationError
from services.tool_fitting import ToolFittingService

DAY1 = date(2024, 3, 1)


def type_fit(tool_id, quantity, site_id="S1"):
    return FitRequest(
        asset_id="M1",
        asset_kind=AssetKind.MACHINE,
        site_id=site_id,
        component_ref=ByTypeOnly(drilling_tool_id=tool_id),
        fitted_date=DAY1,
        fitted_rpm=1000.0,
        quantity=quantity,
    )


async def stock_of(db, tool_id, site_id="S1"):
    row = await db.site_stock.find_one({"_id": site_stock_id(site_id, tool_id)})
    return row["quantity"] if row else 0


class TestAvailableComponents:
    """What can be fitted to an asset"""

    @pytest.mark.asyncio
    async def test_lists_instances_and_stock_at_the_site(self, fleet):
        fitting = ToolFittingService(fleet)
        available = await fitting.list_available_components_for_asset("M1", AssetKind.MACHINE)

        instances = {c.instance_id: c for c in available if c.kind == "instance"}
        stock = [c for c in available if c.kind == "type"]
        assert set(instances) == {"T1", "U1", "B1"}
        assert instances["B1"].accumulated_meter == 100.0
        assert instances["T1"].tool_name == "DTH Hammer 115mm"
        assert [(c.drilling_tool_id, c.available_quantity) for c in stock] == [("ROD", 5)]

    @pytest.mark.asyncio
    async def test_fitted_instance_is_not_available(self, fleet):
        fitting = ToolFittingService(fleet)
        await fitting.fit_tool(FitRequest(
            asset_id="M1",
            asset_kind=AssetKind.MACHINE,
            site_id="S1",
            component_ref=ByInstance(instance_id="T1"),
            fitted_date=DAY1,
            fitted_rpm=1000.0,
        ))
        available = await fitting.list_available_components_for_asset("C1")
        assert "T1" not in {c.instance_id for c in available}

    @pytest.mark.asyncio
    async def test_other_site_sees_nothing(self, fleet):
        fitting = ToolFittingService(fleet)
        assert await fitting.list_available_components_for_asset("M2", AssetKind.MACHINE) == []

    @pytest.mark.asyncio
    async def test_unknown_asset(self, fleet):
        fitting = ToolFittingService(fleet)
        with pytest.raises(NotFoundError):
            await fitting.list_available_components_for_asset("NOPE")


class TestTypeOnlyFit:
    """Consumption from site stock"""

    @pytest.mark.asyncio
    async def test_fit_reserves_and_undo_returns_stock(self, fleet):
        fitting = ToolFittingService(fleet)
        installation = await fitting.fit_tool(type_fit("ROD", 2))
        assert await stock_of(fleet, "ROD") == 3

        await fitting.undo_pending_fit(installation.id, installation.transaction_id)
        assert await stock_of(fleet, "ROD") == 5

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, fleet):
        fitting = ToolFittingService(fleet)
        with pytest.raises(ValidationError) as exc:
            await fitting.fit_tool(type_fit("ROD", 6))
        assert "available 5" in exc.value.errors[0]["message"]
        assert await stock_of(fleet, "ROD") == 5
        assert await fleet.tool_installations.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_failed_ledger_write_releases_stock(self, fleet):
        await fleet.site_stock.insert_one({
            "_id": site_stock_id("S1", "GHOST"), "site_id": "S1", "drilling_tool_id": "GHOST", "quantity": 2,
        })
        fitting = ToolFittingService(fleet)
        with pytest.raises(NotFoundError):
            await fitting.fit_tool(type_fit("GHOST", 1))
        assert await stock_of(fleet, "GHOST") == 2

    @pytest.mark.asyncio
    async def test_remove_keeps_consumed_stock(self, fleet):
        fitting = ToolFittingService(fleet)
        installation = await fitting.fit_tool(type_fit("ROD", 1))
        await fitting.remove_tool(installation.id, RemoveRequest(removed_date=DAY1, removed_rpm=1010.0))
        assert await stock_of(fleet, "ROD") == 4


class TestAssetDayLock:
    """Serialization per asset and day"""

    @pytest.mark.asyncio
    async def test_second_holder_times_out(self, db):
        lock = AssetDayLock(db, timeout_seconds=0.1, poll_interval=0.01)
        async with lock.hold("machine", "M1", "2024-03-01"):
            with pytest.raises(ConflictError):
                async with lock.hold("machine", "M1", "2024-03-01"):
                    pass
            # Another day is independent
            async with lock.hold("machine", "M1", "2024-03-02"):
                pass
        assert await db.asset_day_locks.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_abandoned_lock_is_reclaimed(self, db):
        lock = AssetDayLock(db, timeout_seconds=0.1, ttl_seconds=60.0, poll_interval=0.01)
        await db.asset_day_locks.insert_one({
            "_id": "machine:M1:2024-03-01", "owner": "crashed-worker", "acquired_at": datetime(2020, 1, 1),
        })
        async with lock.hold("machine", "M1", "2024-03-01") as token:
            held = await db.asset_day_locks.find_one({"_id": "machine:M1:2024-03-01"})
            assert held["owner"] == token
