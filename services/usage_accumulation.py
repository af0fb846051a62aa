"""
Usage Accumulation Engine

Turns a daily operational entry for one asset into drilling tool usage.

ORDER OF OPERATIONS (per asset-day, under the asset-day lock):
1. fit actions           -> new installations experience the whole day
2. credit the day        -> every ACTIVE installation fitted on/before the day
                            receives the full asset delta (never divided)
3. remove actions        -> frozen with post-delta readings
4. asset counter         -> raised to the day's highest closing reading

Corrections re-derive the delta from the corrected readings and replace the
stored per-day attribution; an unchanged resubmission changes nothing.
Negative readings pairs are clamped to 0 and reported as warnings.
"""

import logging
from datetime import datetime, date
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from models.daily_usage import (
    DailyDeltas,
    DailyUsageResult,
    DailyUsageSubmission,
    ShiftReading,
    ToolAction,
    UsageWarning,
    daily_usage_id,
)
from models.drilling_tools import AssetKind
from models.installation import (
    ByInstance,
    ByTypeOnly,
    FitRequest,
    Installation,
    InstallationStatus,
    UsageAction,
)
from services.asset_locks import AssetDayLock
from services.assets import current_reading, find_asset, raise_asset_reading
from services.errors import ConflictError, InvalidStateError, UsageEngineError, ValidationError
from services.installation_ledger import InstallationLedger
from services.tool_fitting import ToolFittingService

logger = logging.getLogger(__name__)


class UsageAccumulationEngine:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        ledger: Optional[InstallationLedger] = None,
        fitting: Optional[ToolFittingService] = None,
        lock: Optional[AssetDayLock] = None,
        max_shifts_per_day: int = 2,
    ):
        self.db = db
        self.ledger = ledger or InstallationLedger(db)
        self.lock = lock or AssetDayLock(db)
        self.fitting = fitting or ToolFittingService(db, self.ledger, self.lock)
        self.max_shifts_per_day = max_shifts_per_day

    # --------------------------------------------------------
    # DELTAS
    # --------------------------------------------------------

    def compute_daily_deltas(self, shifts: List[ShiftReading], asset_id: Optional[str] = None) -> DailyDeltas:
        """
        Sum the rotational and output deltas of the day's shifts.

        Structural problems (too many shifts, duplicates, missing readings)
        raise ValidationError; a closing reading below the opening one is
        clamped to 0 and reported as a warning.
        """
        errors = []
        warnings = []
        rotational = 0.0
        output = 0.0
        closing_rpm = None

        if len(shifts) > self.max_shifts_per_day:
            errors.append({
                "field": "shifts",
                "message": f"At most {self.max_shifts_per_day} shifts per day, got {len(shifts)}",
                "asset_id": asset_id,
            })

        seen = set()
        for s in shifts:
            prefix = f"shifts[{s.shift}]"
            if s.shift in seen:
                errors.append({"field": prefix, "message": "Shift logged twice", "asset_id": asset_id})
                continue
            seen.add(s.shift)
            if not s.enabled:
                continue

            missing = False
            for name in ("opening_rpm", "closing_rpm"):
                value = getattr(s, name)
                if value is None:
                    errors.append({"field": f"{prefix}.{name}", "message": "Required for an enabled shift", "asset_id": asset_id})
                    missing = True
                elif value < 0:
                    errors.append({"field": f"{prefix}.{name}", "message": "Reading must be >= 0", "asset_id": asset_id})
                    missing = True
            if missing:
                continue

            delta = s.closing_rpm - s.opening_rpm
            if delta < 0:
                logger.warning(
                    f"Asset {asset_id} {prefix}: closing {s.closing_rpm} below opening {s.opening_rpm}, counted as 0"
                )
                warnings.append(UsageWarning(
                    field=f"{prefix}.closing_rpm",
                    message=f"Closing reading {s.closing_rpm} is below opening reading {s.opening_rpm}; counted as 0",
                    asset_id=asset_id,
                ))
                delta = 0.0
            rotational += delta

            meter = s.meter or 0.0
            if meter < 0:
                logger.warning(f"Asset {asset_id} {prefix}: negative meter {meter}, counted as 0")
                warnings.append(UsageWarning(
                    field=f"{prefix}.meter",
                    message=f"Meter {meter} is negative; counted as 0",
                    asset_id=asset_id,
                ))
                meter = 0.0
            output += meter

            closing_rpm = s.closing_rpm if closing_rpm is None else max(closing_rpm, s.closing_rpm)

        if errors:
            raise ValidationError("Daily entry rejected", errors)

        return DailyDeltas(rotational=rotational, output=output, closing_rpm=closing_rpm, warnings=warnings)

    def _validate_actions(self, submission: DailyUsageSubmission) -> List[dict]:
        errors = []
        fitted_instances = set()
        removed_installations = set()
        for i, action in enumerate(submission.tool_actions):
            prefix = f"tool_actions[{i}]"
            if action.action == UsageAction.FIT:
                if not action.instance_id and not action.drilling_tool_id:
                    errors.append({"field": prefix, "message": "A fit needs instance_id or drilling_tool_id"})
                if action.quantity is None or action.quantity <= 0:
                    errors.append({"field": f"{prefix}.quantity", "message": "Quantity must be greater than 0"})
                elif action.instance_id and action.quantity != 1:
                    errors.append({"field": f"{prefix}.quantity", "message": "A serialized tool is fitted one unit at a time"})
                if action.instance_id:
                    if action.instance_id in fitted_instances:
                        errors.append({"field": f"{prefix}.instance_id", "message": f"Tool instance {action.instance_id} is fitted twice"})
                    fitted_instances.add(action.instance_id)
            elif action.action == UsageAction.REMOVE:
                if not action.installation_id:
                    errors.append({"field": f"{prefix}.installation_id", "message": "A removal needs installation_id"})
                elif action.installation_id in removed_installations:
                    errors.append({"field": f"{prefix}.installation_id", "message": f"Installation {action.installation_id} is removed twice"})
                else:
                    removed_installations.add(action.installation_id)
        for error in errors:
            error["asset_id"] = submission.asset_id
        return errors

    # --------------------------------------------------------
    # SUBMIT
    # --------------------------------------------------------

    async def submit_daily_usage(self, submission: DailyUsageSubmission) -> DailyUsageResult:
        """Apply (or re-apply after a correction) one asset-day of operational data"""
        asset, asset_kind = await find_asset(self.db, submission.asset_id, submission.asset_kind)
        deltas = self.compute_daily_deltas(submission.shifts, submission.asset_id)
        errors = self._validate_actions(submission)
        if errors:
            raise ValidationError("Daily entry rejected", errors)

        day = submission.usage_date.isoformat()
        closing = deltas.closing_rpm if deltas.closing_rpm is not None else current_reading(asset)
        warnings = list(deltas.warnings)

        async with self.lock.hold(asset_kind.value, submission.asset_id, day):
            await self._check_superseded(submission, asset_kind, day)
            fits = await self._pending_fits(submission, asset_kind, day)
            removals = await self._pending_removals(submission)

            fitted: List[Installation] = []
            applied: List[Tuple[str, Optional[dict]]] = []
            removed: List[Installation] = []
            try:
                for action in fits:
                    fitted.append(await self.fitting.fit_tool(
                        self._fit_request(submission, asset_kind, action, asset),
                        hold_lock=False,
                    ))

                await self._credit_active(submission, asset_kind, deltas, closing, applied)

                for installation in removals:
                    removed.append(await self.ledger.remove(
                        installation.id,
                        removed_date=submission.usage_date,
                        removed_rpm=closing,
                        daily_entry_id=submission.entry_id,
                    ))
            except Exception as e:
                logger.error(
                    f"Daily entry {submission.entry_id} for {asset_kind.value} {submission.asset_id} on {day} "
                    f"rejected, restoring prior totals: {e}"
                )
                await self._compensate(applied, fitted, removed, submission.entry_id, day)
                raise

            warnings.extend(await self._frozen_warnings(submission.asset_id, asset_kind, day, deltas))
            await raise_asset_reading(self.db, asset_kind, submission.asset_id, deltas.closing_rpm)
            await self._store_submission(submission, asset_kind, day, deltas)

        logger.info(
            f"Daily entry {submission.entry_id}: {asset_kind.value} {submission.asset_id} on {day} "
            f"rpm +{deltas.rotational}, meter +{deltas.output} to {len(applied)} installation(s)"
        )
        return DailyUsageResult(
            entry_id=submission.entry_id,
            asset_id=submission.asset_id,
            asset_kind=asset_kind,
            usage_date=submission.usage_date,
            rotational_delta=deltas.rotational,
            output_delta=deltas.output,
            credited_installations=[installation_id for installation_id, _ in applied],
            fitted_installations=[i.id for i in fitted],
            removed_installations=[i.id for i in removed],
            warnings=warnings,
        )

    async def _check_superseded(self, submission: DailyUsageSubmission, asset_kind: AssetKind, day: str) -> None:
        if not submission.supersedes_entry_id:
            return
        stored = await self.db.daily_usage.find_one(
            {"_id": daily_usage_id(asset_kind.value, submission.asset_id, day)}
        )
        if stored and stored["entry_id"] not in (submission.supersedes_entry_id, submission.entry_id):
            raise ConflictError(
                f"Entry {submission.supersedes_entry_id} is no longer the current entry for "
                f"{submission.asset_id} on {day} (current: {stored['entry_id']}); reload and retry"
            )

    async def _pending_fits(self, submission: DailyUsageSubmission, asset_kind: AssetKind, day: str) -> List[ToolAction]:
        """Fit actions not already applied by an earlier submission of this entry"""
        entry_ids = [submission.entry_id]
        if submission.supersedes_entry_id:
            entry_ids.append(submission.supersedes_entry_id)

        already = []
        async for doc in self.db.tool_installations.find({
            "asset_id": submission.asset_id,
            "asset_kind": asset_kind.value,
            "fitted_date": day,
            "daily_entry_id": {"$in": entry_ids},
        }):
            already.append(doc)

        pending = []
        for action in submission.tool_actions:
            if action.action != UsageAction.FIT:
                continue
            match = None
            for doc in already:
                if action.instance_id and doc.get("tool_instance_id") == action.instance_id:
                    match = doc
                elif (not action.instance_id and doc.get("tool_instance_id") is None
                        and doc["drilling_tool_id"] == action.drilling_tool_id):
                    match = doc
                if match:
                    break
            if match:
                already.remove(match)
                logger.debug(f"Fit of {action.instance_id or action.drilling_tool_id} already applied by {match['daily_entry_id']}")
                continue
            pending.append(action)
        return pending

    async def _pending_removals(self, submission: DailyUsageSubmission) -> List[Installation]:
        errors = []
        removals = []
        for i, action in enumerate(submission.tool_actions):
            if action.action != UsageAction.REMOVE:
                continue
            installation = await self.ledger.get(action.installation_id)
            if installation.asset_id != submission.asset_id:
                errors.append({
                    "field": f"tool_actions[{i}].installation_id",
                    "message": f"Installation {installation.id} is fitted to another asset",
                    "asset_id": submission.asset_id,
                })
                continue
            if installation.status == InstallationStatus.COMPLETED:
                if installation.removed_date == submission.usage_date:
                    continue  # removed by an earlier submission of this day
                raise InvalidStateError(f"Installation {installation.id} was already removed on {installation.removed_date}")
            if installation.fitted_date > submission.usage_date:
                errors.append({
                    "field": f"tool_actions[{i}].installation_id",
                    "message": f"Installation {installation.id} was fitted after {submission.usage_date}",
                    "asset_id": submission.asset_id,
                })
                continue
            removals.append(installation)
        if errors:
            raise ValidationError("Daily entry rejected", errors)
        return removals

    def _fit_request(self, submission: DailyUsageSubmission, asset_kind: AssetKind, action: ToolAction, asset: dict) -> FitRequest:
        fitted_rpm = action.fitted_rpm
        if fitted_rpm is None:
            openings = [s.opening_rpm for s in sorted(submission.shifts, key=lambda s: s.shift)
                        if s.enabled and s.opening_rpm is not None]
            fitted_rpm = openings[0] if openings else current_reading(asset)
        if action.instance_id:
            ref = ByInstance(instance_id=action.instance_id)
        else:
            ref = ByTypeOnly(drilling_tool_id=action.drilling_tool_id)
        return FitRequest(
            asset_id=submission.asset_id,
            asset_kind=asset_kind,
            site_id=submission.site_id,
            component_ref=ref,
            fitted_date=submission.usage_date,
            fitted_rpm=fitted_rpm,
            fitted_meter=action.fitted_meter,
            quantity=action.quantity,
            daily_entry_id=submission.entry_id,
            transaction_id=submission.entry_id,
        )

    async def _credit_active(
        self,
        submission: DailyUsageSubmission,
        asset_kind: AssetKind,
        deltas: DailyDeltas,
        closing: Optional[float],
        applied: List[Tuple[str, Optional[dict]]],
    ) -> None:
        active = await self.ledger.list_active_for_asset(
            submission.asset_id, asset_kind, as_of=submission.usage_date
        )
        for installation in active:
            previous = await self.ledger.get_attribution(installation.id, submission.usage_date)
            await self.ledger.record_usage(
                installation.id,
                submission.usage_date,
                deltas.rotational,
                deltas.output,
                asset_rpm=closing,
                daily_entry_id=submission.entry_id,
            )
            applied.append((installation.id, previous))

    async def _compensate(
        self,
        applied: List[Tuple[str, Optional[dict]]],
        fitted: List[Installation],
        removed: List[Installation],
        entry_id: str,
        day: str,
    ) -> None:
        # Removals first: a frozen installation refuses usage changes
        for installation in reversed(removed):
            try:
                await self.ledger.reopen(installation.id, day, daily_entry_id=entry_id)
            except UsageEngineError as e:
                logger.error(f"Could not reopen installation {installation.id} on {day}: {e}")
        for installation_id, previous in reversed(applied):
            try:
                if previous is None:
                    await self.ledger.clear_usage(installation_id, day)
                else:
                    await self.ledger.record_usage(
                        installation_id,
                        day,
                        previous["rpm"],
                        previous["meter"],
                        daily_entry_id=previous.get("daily_entry_id"),
                    )
            except UsageEngineError as e:
                logger.error(f"Could not restore usage of installation {installation_id} on {day}: {e}")
        for installation in reversed(fitted):
            try:
                await self.fitting.undo_pending_fit(installation.id, installation.transaction_id, hold_lock=False)
            except UsageEngineError as e:
                logger.error(f"Could not undo fit {installation.id} on {day}: {e}")

    async def _frozen_warnings(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        day: str,
        deltas: Optional[DailyDeltas],
    ) -> List[UsageWarning]:
        """Installations removed since the day was first recorded keep their frozen totals"""
        warnings = []
        cursor = self.db.tool_installations.find({
            "asset_id": asset_id,
            "asset_kind": asset_kind.value,
            "status": InstallationStatus.COMPLETED.value,
            "fitted_date": {"$lte": day},
            "removed_date": {"$gte": day},
        })
        async for doc in cursor:
            attribution = await self.ledger.get_attribution(doc["_id"], day)
            if not attribution:
                continue
            new_rpm = deltas.rotational if deltas else 0.0
            new_meter = deltas.output if deltas else 0.0
            if attribution["rpm"] == new_rpm and attribution["meter"] == new_meter:
                continue
            warnings.append(UsageWarning(
                field="installation",
                message=(
                    f"Installation {doc['_id']} was removed on {doc['removed_date']}; "
                    f"its usage for {day} stays frozen at {attribution['meter']} meter"
                ),
                asset_id=asset_id,
                installation_id=doc["_id"],
            ))
        return warnings

    async def _store_submission(
        self,
        submission: DailyUsageSubmission,
        asset_kind: AssetKind,
        day: str,
        deltas: DailyDeltas,
    ) -> None:
        now = datetime.utcnow()
        await self.db.daily_usage.update_one(
            {"_id": daily_usage_id(asset_kind.value, submission.asset_id, day)},
            {
                "$set": {
                    "entry_id": submission.entry_id,
                    "supersedes_entry_id": submission.supersedes_entry_id,
                    "asset_id": submission.asset_id,
                    "asset_kind": asset_kind.value,
                    "site_id": submission.site_id,
                    "usage_date": day,
                    "shifts": [s.model_dump() for s in submission.shifts],
                    "rotational_delta": deltas.rotational,
                    "output_delta": deltas.output,
                    "closing_rpm": deltas.closing_rpm,
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )

    # --------------------------------------------------------
    # WITHDRAW
    # --------------------------------------------------------

    async def withdraw_daily_usage(
        self,
        asset_kind: AssetKind,
        asset_id: str,
        usage_date: date,
        entry_id: Optional[str] = None,
    ) -> DailyUsageResult:
        """The operational record was deleted: take the day back from every active installation"""
        _, asset_kind = await find_asset(self.db, asset_id, asset_kind)
        day = usage_date.isoformat()

        async with self.lock.hold(asset_kind.value, asset_id, day):
            stored = await self.db.daily_usage.find_one({"_id": daily_usage_id(asset_kind.value, asset_id, day)})
            entry_id = entry_id or (stored or {}).get("entry_id") or ""

            cleared = []
            active = await self.ledger.list_active_for_asset(asset_id, asset_kind, as_of=usage_date)
            for installation in active:
                if await self.ledger.get_attribution(installation.id, day) is None:
                    continue
                await self.ledger.clear_usage(installation.id, usage_date, daily_entry_id=entry_id or None)
                cleared.append(installation.id)

            warnings = await self._frozen_warnings(asset_id, asset_kind, day, None)
            await self.db.daily_usage.delete_one({"_id": daily_usage_id(asset_kind.value, asset_id, day)})

        logger.info(f"Withdrew usage of {asset_kind.value} {asset_id} on {day} from {len(cleared)} installation(s)")
        return DailyUsageResult(
            entry_id=entry_id,
            asset_id=asset_id,
            asset_kind=asset_kind,
            usage_date=usage_date,
            rotational_delta=0.0,
            output_delta=0.0,
            credited_installations=cleared,
            warnings=warnings,
        )
