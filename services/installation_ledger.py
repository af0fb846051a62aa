"""
Installation Ledger

Tracks which drilling tool is fitted to which machine or compressor, at which
site, from when to when, and the usage attributed to each installation.

Collections used:
- tool_installations: one document per fitting (ACTIVE -> COMPLETED)
- tool_usage_logs: append-only fit/remove/update trail
- usage_attributions: amount credited to an installation per asset-day
- tool_instances: claim marker (active_installation_id) and lifetime totals
- drilling_tools: lifetime totals per tool type

RULES:
- One ACTIVE installation per tool instance; the claim is a conditional
  update on the instance document.
- ACTIVE -> COMPLETED is a single conditional update carrying the removal
  stamp, so a frozen installation always has its removal readings.
- Usage for a day replaces what was credited for that day before.
- Lifetime totals only ever move with $inc.
"""

import logging
import uuid
from datetime import datetime, date
from typing import List, Optional, Union
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from models.drilling_tools import AssetKind, ToolInstanceStatus
from models.installation import (
    ByInstance,
    ByTypeOnly,
    Installation,
    InstallationStatus,
    UsageAction,
    UsageAttribution,
    UsageLogEntry,
    attribution_id,
)
from services.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ACTIVE = InstallationStatus.ACTIVE.value
COMPLETED = InstallationStatus.COMPLETED.value

# Optimistic retries when a removal races with a usage credit
MAX_REMOVE_ATTEMPTS = 5


def _day(value: Union[date, str]) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class InstallationLedger:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def get(self, installation_id: str) -> Installation:
        doc = await self.db.tool_installations.find_one({"_id": installation_id})
        if not doc:
            raise NotFoundError(f"Installation {installation_id} not found")
        return Installation(**doc)

    async def list_active_for_asset(
        self,
        asset_id: str,
        asset_kind: Optional[AssetKind] = None,
        as_of: Optional[date] = None,
    ) -> List[Installation]:
        """Installations currently ACTIVE on an asset, optionally only those fitted by `as_of`"""
        query = {"asset_id": asset_id, "status": ACTIVE}
        if asset_kind:
            query["asset_kind"] = AssetKind(asset_kind).value
        if as_of:
            query["fitted_date"] = {"$lte": _day(as_of)}

        cursor = self.db.tool_installations.find(query).sort("fitted_date", 1)
        installations = []
        async for doc in cursor:
            installations.append(Installation(**doc))
        return installations

    async def get_active_for_instance(self, instance_id: str) -> Optional[Installation]:
        doc = await self.db.tool_installations.find_one({
            "tool_instance_id": instance_id,
            "status": ACTIVE,
        })
        return Installation(**doc) if doc else None

    async def list_logs(self, installation_id: str) -> List[UsageLogEntry]:
        cursor = self.db.tool_usage_logs.find(
            {"installation_id": installation_id}
        ).sort("created_at", 1)
        entries = []
        async for doc in cursor:
            entries.append(UsageLogEntry(**doc))
        return entries

    async def get_attribution(self, installation_id: str, usage_date: Union[date, str]) -> Optional[dict]:
        return await self.db.usage_attributions.find_one(
            {"_id": attribution_id(installation_id, _day(usage_date))}
        )

    async def list_attributions(self, installation_id: str) -> List[UsageAttribution]:
        """What each asset-day currently contributes to the installation's totals"""
        cursor = self.db.usage_attributions.find(
            {"installation_id": installation_id}
        ).sort("usage_date", 1)
        attributions = []
        async for doc in cursor:
            attributions.append(UsageAttribution(**doc))
        return attributions

    # --------------------------------------------------------
    # FIT
    # --------------------------------------------------------

    async def fit(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        site_id: str,
        component_ref: Union[ByInstance, ByTypeOnly],
        fitted_date: date,
        fitted_rpm: float,
        fitted_meter: float = 0.0,
        quantity: int = 1,
        daily_entry_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Installation:
        """
        Fit a tool to an asset.

        ByInstance claims the serialized unit (ConflictError if it is already
        fitted somewhere) and carries its accumulated meter over from the
        last completed installation. ByTypeOnly records consumption of a
        tool type without lifecycle tracking.
        """
        errors = []
        if fitted_rpm is None or fitted_rpm < 0:
            errors.append({"field": "fitted_rpm", "message": "Asset reading at fit time is required and must be >= 0"})
        if fitted_meter is None or fitted_meter < 0:
            errors.append({"field": "fitted_meter", "message": "Meter reading must be >= 0"})
        if quantity is None or quantity <= 0:
            errors.append({"field": "quantity", "message": "Quantity must be greater than 0"})
        elif isinstance(component_ref, ByInstance) and quantity != 1:
            errors.append({"field": "quantity", "message": "A serialized tool is fitted one unit at a time"})
        if errors:
            raise ValidationError("Invalid fit request", errors)

        asset_kind = AssetKind(asset_kind)
        installation_id = str(uuid.uuid4())
        transaction_id = transaction_id or daily_entry_id or str(uuid.uuid4())
        now = datetime.utcnow()
        instance_id = None

        if isinstance(component_ref, ByInstance):
            instance_id = component_ref.instance_id
            instance = await self.db.tool_instances.find_one({"_id": instance_id})
            if not instance:
                raise NotFoundError(f"Tool instance {instance_id} not found")
            if instance.get("status") == ToolInstanceStatus.DISCARDED.value:
                raise InvalidStateError(f"Tool instance {instance_id} is discarded")

            drilling_tool_id = instance["drilling_tool_id"]
            initial_meter = await self._carried_over_meter(instance)

            claimed = await self.db.tool_instances.find_one_and_update(
                {
                    "_id": instance_id,
                    "active_installation_id": None,
                    "status": {"$ne": ToolInstanceStatus.DISCARDED.value},
                },
                {"$set": {
                    "active_installation_id": installation_id,
                    "status": ToolInstanceStatus.FITTED.value,
                    "fitted_asset_id": asset_id,
                    "fitted_asset_kind": asset_kind.value,
                    "site_id": site_id,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
            if claimed is None:
                current = await self.db.tool_instances.find_one({"_id": instance_id}) or {}
                raise ConflictError(
                    f"Tool instance {instance_id} is already fitted "
                    f"(installation {current.get('active_installation_id')}); remove it first"
                )
            ref_doc = {"kind": "instance", "instance_id": instance_id, "drilling_tool_id": drilling_tool_id}
        else:
            drilling_tool_id = component_ref.drilling_tool_id
            tool = await self.db.drilling_tools.find_one({"_id": drilling_tool_id})
            if not tool:
                raise NotFoundError(f"Drilling tool {drilling_tool_id} not found")
            initial_meter = 0.0
            ref_doc = {"kind": "type", "drilling_tool_id": drilling_tool_id}

        doc = {
            "_id": installation_id,
            "component_ref": ref_doc,
            "drilling_tool_id": drilling_tool_id,
            "tool_instance_id": instance_id,
            "asset_id": asset_id,
            "asset_kind": asset_kind.value,
            "site_id": site_id,
            "status": ACTIVE,
            "quantity": quantity,
            "fitted_date": _day(fitted_date),
            "fitted_rpm": float(fitted_rpm),
            "fitted_meter": float(fitted_meter),
            "removed_date": None,
            "removed_rpm": None,
            "removed_meter": None,
            "initial_accumulated_meter": initial_meter,
            "current_accumulated_meter": initial_meter,
            "accumulated_rpm": 0.0,
            "current_rpm": float(fitted_rpm),
            "usage_days": 0,
            "transaction_id": transaction_id,
            "daily_entry_id": daily_entry_id,
            "created_at": now,
            "updated_at": now,
        }

        try:
            await self.db.tool_installations.insert_one(doc)
            await self._append_log(
                doc,
                UsageAction.FIT,
                doc["fitted_date"],
                asset_rpm=doc["fitted_rpm"],
                asset_meter=doc["fitted_meter"],
                accumulated_meter=initial_meter,
                daily_entry_id=daily_entry_id,
            )
        except Exception as e:
            logger.error(f"Fit of {drilling_tool_id} on {asset_kind.value} {asset_id} failed, rolling back: {e}")
            await self.db.tool_installations.delete_one({"_id": installation_id})
            await self.db.tool_usage_logs.delete_many({"installation_id": installation_id})
            if instance_id:
                await self._release_instance(instance_id, installation_id, site_id)
            raise

        logger.info(
            f"Fitted {ref_doc['kind']} {instance_id or drilling_tool_id} on {asset_kind.value} {asset_id} "
            f"(installation {installation_id}, initial meter {initial_meter})"
        )
        return Installation(**doc)

    async def _carried_over_meter(self, instance: dict) -> float:
        """Accumulated meter of the instance's most recent completed installation"""
        cursor = self.db.tool_installations.find({
            "tool_instance_id": instance["_id"],
            "status": COMPLETED,
        }).sort([("removed_date", -1), ("updated_at", -1)]).limit(1)
        async for last in cursor:
            return float(last.get("current_accumulated_meter") or 0.0)
        return float(instance.get("initial_meter") or 0.0)

    # --------------------------------------------------------
    # REMOVE
    # --------------------------------------------------------

    async def remove(
        self,
        installation_id: str,
        removed_date: date,
        removed_rpm: float,
        removed_meter: Optional[float] = None,
        daily_entry_id: Optional[str] = None,
    ) -> Installation:
        """Stamp the removal, freeze the totals and release the tool instance"""
        errors = []
        if removed_rpm is None or removed_rpm < 0:
            errors.append({"field": "removed_rpm", "message": "Asset reading at removal is required and must be >= 0"})
        if removed_meter is not None and removed_meter < 0:
            errors.append({"field": "removed_meter", "message": "Meter reading must be >= 0"})
        if errors:
            raise ValidationError("Invalid remove request", errors)

        day = _day(removed_date)

        for _ in range(MAX_REMOVE_ATTEMPTS):
            existing = await self.db.tool_installations.find_one({"_id": installation_id})
            if not existing:
                raise NotFoundError(f"No active installation {installation_id}")
            if existing["status"] == COMPLETED:
                raise InvalidStateError(f"Installation {installation_id} was already removed on {existing.get('removed_date')}")
            if day < existing["fitted_date"]:
                raise ValidationError(
                    "Removal date precedes fitting date",
                    [{"field": "removed_date", "message": f"Must be on or after {existing['fitted_date']}"}],
                )

            frozen_meter = existing["current_accumulated_meter"]
            now = datetime.utcnow()
            # Guarding on the meter makes a concurrent usage credit force a re-read
            updated = await self.db.tool_installations.find_one_and_update(
                {"_id": installation_id, "status": ACTIVE, "current_accumulated_meter": frozen_meter},
                {"$set": {
                    "status": COMPLETED,
                    "removed_date": day,
                    "removed_rpm": float(removed_rpm),
                    "removed_meter": float(removed_meter) if removed_meter is not None else frozen_meter,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                break
            logger.info(f"Installation {installation_id} changed while removing, retrying")
        else:
            raise ConflictError(f"Installation {installation_id} kept changing while being removed; retry")

        instance_id = updated.get("tool_instance_id")
        try:
            if instance_id:
                await self._release_instance(instance_id, installation_id, updated["site_id"])
            await self._append_log(
                updated,
                UsageAction.REMOVE,
                day,
                asset_rpm=updated["removed_rpm"],
                asset_meter=updated["removed_meter"],
                accumulated_meter=updated["current_accumulated_meter"],
                daily_entry_id=daily_entry_id,
            )
        except Exception as e:
            logger.error(f"Removal of installation {installation_id} failed, reopening: {e}")
            await self._clear_removal(installation_id, day)
            if instance_id:
                await self._reclaim_instance(updated)
            raise

        logger.info(
            f"Removed installation {installation_id} from {updated['asset_kind']} {updated['asset_id']} "
            f"on {day}, accumulated meter frozen at {updated['current_accumulated_meter']}"
        )
        return Installation(**updated)

    async def reopen(self, installation_id: str, removed_date: date, daily_entry_id: Optional[str] = None) -> Installation:
        """
        Reverse a removal made on `removed_date`.

        Used when the daily entry that carried the removal is rejected: the
        installation goes back to ACTIVE, the tool instance is claimed again
        and the remove log written by that entry is dropped.
        """
        day = _day(removed_date)
        existing = await self.db.tool_installations.find_one({"_id": installation_id})
        if not existing:
            raise NotFoundError(f"Installation {installation_id} not found")
        if existing["status"] != COMPLETED or existing.get("removed_date") != day:
            raise InvalidStateError(f"Installation {installation_id} has no removal on {day} to reverse")

        instance_id = existing.get("tool_instance_id")
        if instance_id and not await self._reclaim_instance(existing):
            raise ConflictError(f"Tool instance {instance_id} was fitted elsewhere; installation {installation_id} stays removed")

        reopened = await self._clear_removal(installation_id, day)
        if reopened is None:
            if instance_id:
                await self._release_instance(instance_id, installation_id, existing["site_id"])
            raise InvalidStateError(f"Installation {installation_id} changed while reopening")

        await self.db.tool_usage_logs.delete_many({
            "installation_id": installation_id,
            "action": UsageAction.REMOVE.value,
            "daily_entry_id": daily_entry_id,
        })
        logger.info(f"Reopened installation {installation_id} on {reopened['asset_kind']} {reopened['asset_id']}")
        return Installation(**reopened)

    async def _clear_removal(self, installation_id: str, day: str) -> Optional[dict]:
        return await self.db.tool_installations.find_one_and_update(
            {"_id": installation_id, "status": COMPLETED, "removed_date": day},
            {"$set": {
                "status": ACTIVE,
                "removed_date": None,
                "removed_rpm": None,
                "removed_meter": None,
                "updated_at": datetime.utcnow(),
            }},
            return_document=ReturnDocument.AFTER,
        )

    async def _reclaim_instance(self, installation: dict) -> bool:
        result = await self.db.tool_instances.update_one(
            {"_id": installation["tool_instance_id"], "active_installation_id": None},
            {"$set": {
                "active_installation_id": installation["_id"],
                "status": ToolInstanceStatus.FITTED.value,
                "fitted_asset_id": installation["asset_id"],
                "fitted_asset_kind": installation["asset_kind"],
                "updated_at": datetime.utcnow(),
            }},
        )
        return result.matched_count == 1

    async def _release_instance(self, instance_id: str, installation_id: str, site_id: str) -> None:
        await self.db.tool_instances.update_one(
            {"_id": instance_id, "active_installation_id": installation_id},
            {"$set": {
                "active_installation_id": None,
                "status": ToolInstanceStatus.IN_STOCK.value,
                "fitted_asset_id": None,
                "fitted_asset_kind": None,
                "site_id": site_id,
                "updated_at": datetime.utcnow(),
            }},
        )

    # --------------------------------------------------------
    # USAGE
    # --------------------------------------------------------

    async def record_usage(
        self,
        installation_id: str,
        usage_date: date,
        delta_rpm: float,
        delta_meter: float,
        asset_rpm: Optional[float] = None,
        daily_entry_id: Optional[str] = None,
    ) -> Installation:
        """
        Credit one asset-day of usage to an ACTIVE installation.

        Idempotent by day: whatever was credited for `usage_date` before is
        replaced, so only the difference moves the running totals.
        """
        errors = []
        if delta_rpm is None or delta_rpm < 0:
            errors.append({"field": "delta_rpm", "message": "Usage delta must be >= 0"})
        if delta_meter is None or delta_meter < 0:
            errors.append({"field": "delta_meter", "message": "Usage delta must be >= 0"})
        if errors:
            raise ValidationError(f"Invalid usage for installation {installation_id}", errors)

        day = _day(usage_date)
        existing = await self.db.tool_installations.find_one({"_id": installation_id})
        if not existing:
            raise NotFoundError(f"Installation {installation_id} not found")
        if existing["status"] != ACTIVE:
            raise InvalidStateError(f"Installation {installation_id} is {existing['status']}; usage can no longer be recorded")
        if day < existing["fitted_date"]:
            raise ValidationError(
                "Usage date precedes fitting date",
                [{"field": "usage_date", "message": f"Must be on or after {existing['fitted_date']}"}],
            )

        previous = await self.get_attribution(installation_id, day)
        prev_rpm = float(previous["rpm"]) if previous else 0.0
        prev_meter = float(previous["meter"]) if previous else 0.0
        diff_rpm = float(delta_rpm) - prev_rpm
        diff_meter = float(delta_meter) - prev_meter

        if previous is not None and diff_rpm == 0 and diff_meter == 0:
            logger.debug(f"Usage for installation {installation_id} on {day} unchanged")
            return Installation(**existing)

        await self._swap_attribution(installation_id, day, previous, delta_rpm, delta_meter, daily_entry_id)

        update = {
            "$inc": {"current_accumulated_meter": diff_meter, "accumulated_rpm": diff_rpm},
            "$set": {"updated_at": datetime.utcnow()},
        }
        if previous is None:
            update["$inc"]["usage_days"] = 1
        if asset_rpm is not None:
            update["$max"] = {"current_rpm": float(asset_rpm)}

        updated = None
        totals_rolled = False
        try:
            updated = await self.db.tool_installations.find_one_and_update(
                {"_id": installation_id, "status": ACTIVE},
                update,
                return_document=ReturnDocument.AFTER,
            )
            if updated is None:
                raise InvalidStateError(f"Installation {installation_id} was removed concurrently; usage not recorded")

            await self._roll_lifetime_totals(updated, diff_rpm, diff_meter)
            totals_rolled = True
            await self._append_log(
                updated,
                UsageAction.UPDATE,
                day,
                asset_rpm=asset_rpm,
                accumulated_meter=updated["current_accumulated_meter"],
                delta_rpm=diff_rpm,
                delta_meter=diff_meter,
                daily_entry_id=daily_entry_id,
            )
        except Exception as e:
            logger.error(f"Usage of installation {installation_id} on {day} failed, rolling back: {e}")
            if totals_rolled:
                await self._roll_lifetime_totals(updated, -diff_rpm, -diff_meter)
            if updated is not None:
                undo = {
                    "$inc": {"current_accumulated_meter": -diff_meter, "accumulated_rpm": -diff_rpm},
                    "$set": {"current_rpm": existing["current_rpm"], "updated_at": datetime.utcnow()},
                }
                if previous is None:
                    undo["$inc"]["usage_days"] = -1
                await self.db.tool_installations.update_one({"_id": installation_id}, undo)
            await self._restore_attribution(installation_id, day, previous)
            raise

        if previous is not None:
            logger.info(
                f"Corrected usage of installation {installation_id} on {day}: "
                f"meter {prev_meter} -> {delta_meter}, rpm {prev_rpm} -> {delta_rpm}"
            )
        return Installation(**updated)

    async def clear_usage(self, installation_id: str, usage_date: date, daily_entry_id: Optional[str] = None) -> Installation:
        """Take back everything credited to an ACTIVE installation for one day"""
        day = _day(usage_date)
        previous = await self.get_attribution(installation_id, day)
        if previous is None:
            return await self.get(installation_id)

        prev_rpm = float(previous["rpm"])
        prev_meter = float(previous["meter"])
        deleted = await self.db.usage_attributions.delete_one({
            "_id": previous["_id"], "rpm": previous["rpm"], "meter": previous["meter"],
        })
        if not deleted.deleted_count:
            raise ConflictError(f"Usage of installation {installation_id} on {day} changed concurrently")

        updated = await self.db.tool_installations.find_one_and_update(
            {"_id": installation_id, "status": ACTIVE},
            {
                "$inc": {"current_accumulated_meter": -prev_meter, "accumulated_rpm": -prev_rpm, "usage_days": -1},
                "$set": {"updated_at": datetime.utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            await self.db.usage_attributions.insert_one(previous)
            raise InvalidStateError(f"Installation {installation_id} is no longer active; its usage is frozen")

        totals_rolled = False
        try:
            await self._roll_lifetime_totals(updated, -prev_rpm, -prev_meter)
            totals_rolled = True
            await self._append_log(
                updated,
                UsageAction.UPDATE,
                day,
                accumulated_meter=updated["current_accumulated_meter"],
                delta_rpm=-prev_rpm,
                delta_meter=-prev_meter,
                daily_entry_id=daily_entry_id,
            )
        except Exception as e:
            logger.error(f"Clearing usage of installation {installation_id} on {day} failed, rolling back: {e}")
            if totals_rolled:
                await self._roll_lifetime_totals(updated, prev_rpm, prev_meter)
            await self.db.tool_installations.update_one(
                {"_id": installation_id},
                {"$inc": {"current_accumulated_meter": prev_meter, "accumulated_rpm": prev_rpm, "usage_days": 1}},
            )
            await self.db.usage_attributions.insert_one(previous)
            raise

        logger.info(f"Cleared usage of installation {installation_id} on {day}")
        return Installation(**updated)

    async def _swap_attribution(
        self,
        installation_id: str,
        day: str,
        previous: Optional[dict],
        rpm: float,
        meter: float,
        daily_entry_id: Optional[str],
    ) -> None:
        """Compare-and-swap the day's attribution; a concurrent writer raises ConflictError"""
        doc_id = attribution_id(installation_id, day)
        fields = {
            "installation_id": installation_id,
            "usage_date": day,
            "rpm": float(rpm),
            "meter": float(meter),
            "daily_entry_id": daily_entry_id,
            "updated_at": datetime.utcnow(),
        }
        if previous is None:
            try:
                await self.db.usage_attributions.insert_one({"_id": doc_id, **fields})
            except DuplicateKeyError:
                raise ConflictError(f"Usage of installation {installation_id} on {day} was recorded concurrently")
            return

        result = await self.db.usage_attributions.update_one(
            {"_id": doc_id, "rpm": previous["rpm"], "meter": previous["meter"]},
            {"$set": fields},
        )
        if result.matched_count == 0:
            raise ConflictError(f"Usage of installation {installation_id} on {day} changed concurrently")

    async def _restore_attribution(self, installation_id: str, day: str, previous: Optional[dict]) -> None:
        doc_id = attribution_id(installation_id, day)
        if previous is None:
            await self.db.usage_attributions.delete_one({"_id": doc_id})
        else:
            await self.db.usage_attributions.replace_one({"_id": doc_id}, previous)

    async def _roll_lifetime_totals(self, installation: dict, diff_rpm: float, diff_meter: float) -> None:
        """Additive only; every unit of a type-only fitting experienced the usage"""
        if diff_rpm == 0 and diff_meter == 0:
            return
        quantity = installation.get("quantity") or 1
        await self.db.drilling_tools.update_one(
            {"_id": installation["drilling_tool_id"]},
            {"$inc": {"total_rpm": diff_rpm * quantity, "total_meter": diff_meter * quantity}},
        )
        if installation.get("tool_instance_id"):
            await self.db.tool_instances.update_one(
                {"_id": installation["tool_instance_id"]},
                {"$inc": {"total_rpm": diff_rpm, "total_meter": diff_meter}},
            )

    # --------------------------------------------------------
    # UNDO
    # --------------------------------------------------------

    async def undo_pending_fit(self, installation_id: str, transaction_id: str) -> Installation:
        """
        Hard-delete a fit that never received usage.

        Only the transaction that created the installation may undo it; once a
        day of usage has been credited the remedy is remove().
        """
        existing = await self.db.tool_installations.find_one({"_id": installation_id})
        if not existing:
            raise NotFoundError(f"Installation {installation_id} not found")
        if existing["status"] != ACTIVE:
            raise InvalidStateError(f"Installation {installation_id} is {existing['status']} and cannot be undone")
        if existing.get("transaction_id") != transaction_id:
            raise InvalidStateError(f"Installation {installation_id} was fitted in a different transaction")

        credited = await self.db.usage_attributions.count_documents({"installation_id": installation_id})
        if existing.get("usage_days") or credited:
            raise InvalidStateError(
                f"Installation {installation_id} already has recorded usage; remove it instead"
            )

        deleted = await self.db.tool_installations.delete_one(
            {"_id": installation_id, "status": ACTIVE, "usage_days": 0}
        )
        if not deleted.deleted_count:
            raise InvalidStateError(f"Installation {installation_id} changed while undoing; remove it instead")

        await self.db.tool_usage_logs.delete_many({
            "installation_id": installation_id,
            "action": UsageAction.FIT.value,
        })
        if existing.get("tool_instance_id"):
            await self._release_instance(existing["tool_instance_id"], installation_id, existing["site_id"])

        logger.info(f"Undid pending fit {installation_id} on {existing['asset_kind']} {existing['asset_id']}")
        return Installation(**existing)

    # --------------------------------------------------------
    # LOG
    # --------------------------------------------------------

    async def _append_log(
        self,
        installation: dict,
        action: UsageAction,
        action_date: str,
        asset_rpm: Optional[float] = None,
        asset_meter: Optional[float] = None,
        accumulated_meter: Optional[float] = None,
        delta_rpm: float = 0.0,
        delta_meter: float = 0.0,
        daily_entry_id: Optional[str] = None,
    ) -> str:
        entry = {
            "_id": str(uuid.uuid4()),
            "installation_id": installation["_id"],
            "drilling_tool_id": installation["drilling_tool_id"],
            "tool_instance_id": installation.get("tool_instance_id"),
            "asset_id": installation["asset_id"],
            "asset_kind": installation["asset_kind"],
            "site_id": installation["site_id"],
            "daily_entry_id": daily_entry_id,
            "action": action.value,
            "action_date": action_date,
            "quantity": installation.get("quantity") or 1,
            "asset_rpm": asset_rpm,
            "asset_meter": asset_meter,
            "accumulated_meter": accumulated_meter,
            "delta_rpm": delta_rpm,
            "delta_meter": delta_meter,
            "created_at": datetime.utcnow(),
        }
        await self.db.tool_usage_logs.insert_one(entry)
        return entry["_id"]
