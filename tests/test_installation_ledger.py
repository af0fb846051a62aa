"""
Test Installation Ledger

Tests for:
- Fit by instance / by type, carry-over of the accumulated meter
- Single-active invariant on tool instances
- Idempotent per-day usage credit and lifetime totals
- Freeze on remove
- Undo of a pending fit
"""

import pytest
from datetime import date

from models.drilling_tools import AssetKind, ToolInstanceStatus
from models.installation import ByInstance, ByTypeOnly, InstallationStatus, UsageAction
from services.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from services.installation_ledger import InstallationLedger

DAY1 = date(2024, 3, 1)
DAY2 = date(2024, 3, 2)
DAY3 = date(2024, 3, 3)


async def fit_instance(ledger, instance_id, asset_id="M1", asset_kind=AssetKind.MACHINE, day=DAY1, **kwargs):
    return await ledger.fit(
        asset_id=asset_id,
        asset_kind=asset_kind,
        site_id="S1",
        component_ref=ByInstance(instance_id=instance_id),
        fitted_date=day,
        fitted_rpm=kwargs.pop("fitted_rpm", 1000.0),
        **kwargs,
    )


class TestFit:
    """Fitting tools onto assets"""

    @pytest.mark.asyncio
    async def test_fit_instance_claims_the_unit(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")

        assert installation.status == InstallationStatus.ACTIVE
        assert installation.drilling_tool_id == "HAMMER"
        assert installation.tool_instance_id == "T1"
        assert installation.initial_accumulated_meter == 0.0
        assert installation.current_accumulated_meter == 0.0

        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert instance["active_installation_id"] == installation.id
        assert instance["status"] == ToolInstanceStatus.FITTED.value
        assert instance["fitted_asset_id"] == "M1"

        logs = await ledger.list_logs(installation.id)
        assert [e.action for e in logs] == [UsageAction.FIT]
        assert logs[0].asset_rpm == 1000.0

    @pytest.mark.asyncio
    async def test_instance_cannot_be_fitted_twice(self, fleet):
        ledger = InstallationLedger(fleet)
        first = await fit_instance(ledger, "T1")

        with pytest.raises(ConflictError):
            await fit_instance(ledger, "T1", asset_id="C1", asset_kind=AssetKind.COMPRESSOR)

        active = await fleet.tool_installations.count_documents({"tool_instance_id": "T1", "status": "ACTIVE"})
        assert active == 1
        assert (await ledger.get_active_for_instance("T1")).id == first.id

    @pytest.mark.asyncio
    async def test_initial_meter_of_registered_instance(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "B1")
        assert installation.initial_accumulated_meter == 100.0
        assert installation.meter_this_installation == 0.0

    @pytest.mark.asyncio
    async def test_refit_carries_meter_over(self, fleet):
        ledger = InstallationLedger(fleet)
        first = await fit_instance(ledger, "T1")
        await ledger.record_usage(first.id, DAY1, 40.0, 20.0)
        await ledger.remove(first.id, DAY2, removed_rpm=1040.0)

        second = await fit_instance(ledger, "T1", asset_id="C1", asset_kind=AssetKind.COMPRESSOR, day=DAY3, fitted_rpm=500.0)
        assert second.initial_accumulated_meter == 20.0
        assert second.current_accumulated_meter == 20.0

    @pytest.mark.asyncio
    async def test_unknown_and_discarded_instances(self, fleet):
        ledger = InstallationLedger(fleet)
        with pytest.raises(NotFoundError):
            await fit_instance(ledger, "NOPE")

        await fleet.tool_instances.update_one({"_id": "U1"}, {"$set": {"status": ToolInstanceStatus.DISCARDED.value}})
        with pytest.raises(InvalidStateError):
            await fit_instance(ledger, "U1")

    @pytest.mark.asyncio
    async def test_fit_rejects_bad_readings(self, fleet):
        ledger = InstallationLedger(fleet)
        with pytest.raises(ValidationError) as exc:
            await fit_instance(ledger, "T1", fitted_rpm=-1.0, fitted_meter=-5.0)
        fields = {e["field"] for e in exc.value.errors}
        assert fields == {"fitted_rpm", "fitted_meter"}

        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert instance["active_installation_id"] is None

    @pytest.mark.asyncio
    async def test_type_only_fit(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await ledger.fit(
            asset_id="M1",
            asset_kind=AssetKind.MACHINE,
            site_id="S1",
            component_ref=ByTypeOnly(drilling_tool_id="ROD"),
            fitted_date=DAY1,
            fitted_rpm=1000.0,
            quantity=2,
        )
        assert installation.tool_instance_id is None
        assert installation.quantity == 2
        assert installation.initial_accumulated_meter == 0.0
        assert installation.component_ref.kind == "type"

        with pytest.raises(ValidationError):
            await ledger.fit(
                asset_id="M1",
                asset_kind=AssetKind.MACHINE,
                site_id="S1",
                component_ref=ByTypeOnly(drilling_tool_id="ROD"),
                fitted_date=DAY1,
                fitted_rpm=1000.0,
                quantity=0,
            )


class TestRecordUsage:
    """Per-day usage credit"""

    @pytest.mark.asyncio
    async def test_same_day_is_replaced_not_added(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")

        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0, asset_rpm=1050.0)
        unchanged = await ledger.record_usage(installation.id, DAY1, 50.0, 20.0, asset_rpm=1050.0)
        assert unchanged.current_accumulated_meter == 20.0
        assert unchanged.accumulated_rpm == 50.0
        assert unchanged.usage_days == 1

        corrected = await ledger.record_usage(installation.id, DAY1, 60.0, 20.0, asset_rpm=1060.0)
        assert corrected.accumulated_rpm == 60.0
        assert corrected.current_rpm == 1060.0
        assert corrected.usage_days == 1

        updates = [e for e in await ledger.list_logs(installation.id) if e.action == UsageAction.UPDATE]
        assert [e.delta_rpm for e in updates] == [50.0, 10.0]

        attribution = await ledger.get_attribution(installation.id, DAY1)
        assert attribution["rpm"] == 60.0

    @pytest.mark.asyncio
    async def test_lifetime_totals_follow_the_difference(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")

        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0)
        await ledger.record_usage(installation.id, DAY2, 30.0, 15.0)
        await ledger.record_usage(installation.id, DAY1, 40.0, 10.0)

        tool = await fleet.drilling_tools.find_one({"_id": "HAMMER"})
        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert tool["total_rpm"] == 70.0
        assert tool["total_meter"] == 25.0
        assert instance["total_meter"] == 25.0

    @pytest.mark.asyncio
    async def test_type_only_totals_scale_with_quantity(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await ledger.fit(
            asset_id="M1",
            asset_kind=AssetKind.MACHINE,
            site_id="S1",
            component_ref=ByTypeOnly(drilling_tool_id="ROD"),
            fitted_date=DAY1,
            fitted_rpm=1000.0,
            quantity=3,
        )
        await ledger.record_usage(installation.id, DAY1, 10.0, 4.0)

        tool = await fleet.drilling_tools.find_one({"_id": "ROD"})
        assert tool["total_meter"] == 12.0

    @pytest.mark.asyncio
    async def test_negative_delta_is_rejected(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")
        with pytest.raises(ValidationError):
            await ledger.record_usage(installation.id, DAY1, -5.0, 0.0)
        assert await ledger.get_attribution(installation.id, DAY1) is None

    @pytest.mark.asyncio
    async def test_usage_before_fit_date_is_rejected(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1", day=DAY2)
        with pytest.raises(ValidationError):
            await ledger.record_usage(installation.id, DAY1, 5.0, 1.0)

    @pytest.mark.asyncio
    async def test_clear_usage_takes_the_day_back(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")
        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0)
        await ledger.record_usage(installation.id, DAY2, 10.0, 5.0)

        cleared = await ledger.clear_usage(installation.id, DAY1)
        assert cleared.current_accumulated_meter == 5.0
        assert cleared.usage_days == 1
        assert await ledger.get_attribution(installation.id, DAY1) is None

        tool = await fleet.drilling_tools.find_one({"_id": "HAMMER"})
        assert tool["total_meter"] == 5.0

    @pytest.mark.asyncio
    async def test_failed_correction_keeps_the_previous_credit(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")
        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0, asset_rpm=1050.0)

        broken = UsageLogFailingLedger(fleet)
        with pytest.raises(RuntimeError):
            await broken.record_usage(installation.id, DAY1, 70.0, 30.0, asset_rpm=1070.0)

        unchanged = await ledger.get(installation.id)
        assert unchanged.current_accumulated_meter == 20.0
        assert unchanged.accumulated_rpm == 50.0
        assert unchanged.usage_days == 1
        assert unchanged.current_rpm == 1050.0
        assert (await ledger.get_attribution(installation.id, DAY1))["meter"] == 20.0
        tool = await fleet.drilling_tools.find_one({"_id": "HAMMER"})
        assert tool["total_meter"] == 20.0

    @pytest.mark.asyncio
    async def test_usage_log_records_running_meter(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "B1", fitted_meter=7.0)
        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0, asset_rpm=1050.0)

        fit_entry, update_entry = await ledger.list_logs(installation.id)
        assert fit_entry.asset_meter == 7.0
        assert fit_entry.accumulated_meter == 100.0
        assert update_entry.asset_rpm == 1050.0
        assert update_entry.asset_meter is None
        assert update_entry.accumulated_meter == 120.0
        assert update_entry.delta_meter == 20.0


class UsageLogFailingLedger(InstallationLedger):
    async def _append_log(self, installation, action, *args, **kwargs):
        if action == UsageAction.UPDATE:
            raise RuntimeError("log store unavailable")
        return await super()._append_log(installation, action, *args, **kwargs)


class TestRemove:
    """Freeze on remove"""

    @pytest.mark.asyncio
    async def test_remove_freezes_and_releases(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")
        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0)

        removed = await ledger.remove(installation.id, DAY2, removed_rpm=1080.0)
        assert removed.status == InstallationStatus.COMPLETED
        assert removed.removed_date == DAY2
        assert removed.removed_rpm == 1080.0
        assert removed.removed_meter == 20.0

        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert instance["active_installation_id"] is None
        assert instance["status"] == ToolInstanceStatus.IN_STOCK.value

        with pytest.raises(InvalidStateError):
            await ledger.record_usage(installation.id, DAY2, 10.0, 5.0)
        frozen = await ledger.get(installation.id)
        assert frozen.current_accumulated_meter == 20.0

        logs = await ledger.list_logs(installation.id)
        assert logs[-1].action == UsageAction.REMOVE

    @pytest.mark.asyncio
    async def test_reopen_reverses_a_removal(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1")
        await ledger.record_usage(installation.id, DAY1, 50.0, 20.0)
        await ledger.remove(installation.id, DAY2, removed_rpm=1080.0, daily_entry_id="e2")

        with pytest.raises(InvalidStateError):
            await ledger.reopen(installation.id, DAY3, daily_entry_id="e2")

        reopened = await ledger.reopen(installation.id, DAY2, daily_entry_id="e2")
        assert reopened.status == InstallationStatus.ACTIVE
        assert reopened.removed_date is None
        assert reopened.removed_meter is None
        assert reopened.current_accumulated_meter == 20.0

        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert instance["active_installation_id"] == installation.id
        assert instance["status"] == ToolInstanceStatus.FITTED.value
        assert UsageAction.REMOVE not in [e.action for e in await ledger.list_logs(installation.id)]

        await ledger.record_usage(installation.id, DAY2, 10.0, 5.0)
        assert (await ledger.get(installation.id)).current_accumulated_meter == 25.0

    @pytest.mark.asyncio
    async def test_reopen_refuses_a_refitted_instance(self, fleet):
        ledger = InstallationLedger(fleet)
        first = await fit_instance(ledger, "T1")
        await ledger.remove(first.id, DAY2, removed_rpm=1080.0)
        await fit_instance(ledger, "T1", asset_id="C1", asset_kind=AssetKind.COMPRESSOR, day=DAY2, fitted_rpm=500.0)

        with pytest.raises(ConflictError):
            await ledger.reopen(first.id, DAY2)
        assert (await ledger.get(first.id)).status == InstallationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_remove_errors(self, fleet):
        ledger = InstallationLedger(fleet)
        with pytest.raises(NotFoundError):
            await ledger.remove("missing", DAY1, removed_rpm=1000.0)

        installation = await fit_instance(ledger, "T1", day=DAY2)
        with pytest.raises(ValidationError):
            await ledger.remove(installation.id, DAY1, removed_rpm=1000.0)

        await ledger.remove(installation.id, DAY2, removed_rpm=1000.0)
        with pytest.raises(InvalidStateError):
            await ledger.remove(installation.id, DAY3, removed_rpm=1000.0)

    @pytest.mark.asyncio
    async def test_instance_can_be_fitted_again_after_removal(self, fleet):
        ledger = InstallationLedger(fleet)
        first = await fit_instance(ledger, "T1")
        await ledger.remove(first.id, DAY1, removed_rpm=1000.0)
        second = await fit_instance(ledger, "T1", day=DAY2)
        assert (await ledger.get_active_for_instance("T1")).id == second.id


class TestUndoPendingFit:
    """Undoing a fit that was never used"""

    @pytest.mark.asyncio
    async def test_undo_deletes_and_releases(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1", transaction_id="tx-1")

        await ledger.undo_pending_fit(installation.id, "tx-1")

        with pytest.raises(NotFoundError):
            await ledger.get(installation.id)
        assert await fleet.tool_usage_logs.count_documents({"installation_id": installation.id}) == 0
        instance = await fleet.tool_instances.find_one({"_id": "T1"})
        assert instance["active_installation_id"] is None

    @pytest.mark.asyncio
    async def test_undo_needs_the_same_transaction(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1", transaction_id="tx-1")
        with pytest.raises(InvalidStateError):
            await ledger.undo_pending_fit(installation.id, "tx-2")

    @pytest.mark.asyncio
    async def test_undo_after_usage_is_refused(self, fleet):
        ledger = InstallationLedger(fleet)
        installation = await fit_instance(ledger, "T1", transaction_id="tx-1")
        await ledger.record_usage(installation.id, DAY1, 10.0, 2.0)
        with pytest.raises(InvalidStateError):
            await ledger.undo_pending_fit(installation.id, "tx-1")
        assert (await ledger.get(installation.id)).is_active
