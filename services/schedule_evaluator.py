"""
Maintenance Schedule Evaluator

Per-asset service types (cycle in RPM units, reading at last service) and
the due state derived from the asset's current counter reading.

STATUS RULES:
- next_due = last_service + cycle
- remaining = next_due - current
- Overdue if remaining <= 0, DueSoon if remaining <= threshold, else OK
- percent_remaining = clamp(remaining / cycle, 0, 1) * 100

Statuses are computed on demand and never stored.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from models.drilling_tools import AssetKind
from models.service_schedule import (
    ServiceAlert,
    ServiceCompletion,
    ServiceRecord,
    ServiceScheduleConfig,
    ServiceScheduleCreate,
    ServiceScheduleUpdate,
    ServiceState,
    ServiceStatus,
)
from services.assets import ASSET_COLLECTIONS, asset_display_name, current_reading, find_asset
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_THRESHOLD = 50.0


def compute_service_status(
    name: str,
    cycle: float,
    last_service_reading: float,
    current: float,
    due_soon_threshold: float = DEFAULT_DUE_SOON_THRESHOLD,
) -> ServiceStatus:
    next_due = last_service_reading + cycle
    remaining = next_due - current

    if remaining <= 0:
        state = ServiceState.OVERDUE
    elif remaining <= due_soon_threshold:
        state = ServiceState.DUE_SOON
    else:
        state = ServiceState.OK

    ratio = min(max(remaining / cycle, 0.0), 1.0)

    return ServiceStatus(
        name=name,
        cycle=cycle,
        last_service_reading=last_service_reading,
        next_due_reading=next_due,
        current_reading=current,
        remaining=remaining,
        status=state,
        percent_remaining=round(ratio * 100, 2),
    )


class ScheduleEvaluator:
    def __init__(self, db: AsyncIOMotorDatabase, due_soon_threshold: float = DEFAULT_DUE_SOON_THRESHOLD):
        self.db = db
        self.due_soon_threshold = due_soon_threshold

    # --------------------------------------------------------
    # EVALUATION
    # --------------------------------------------------------

    async def evaluate(self, asset_id: str, asset_kind: Optional[AssetKind] = None) -> List[ServiceStatus]:
        asset, kind = await find_asset(self.db, asset_id, asset_kind)
        reading = current_reading(asset)
        return [
            compute_service_status(s.name, s.cycle, s.last_service_rpm, reading, self.due_soon_threshold)
            for s in await self.list_schedules(asset_id, kind)
        ]

    async def service_alerts(self) -> List[ServiceAlert]:
        """Every DueSoon / Overdue service across the fleet, most urgent first"""
        alerts = []
        for kind, collection in ASSET_COLLECTIONS.items():
            async for asset in self.db[collection].find({}):
                cursor = self.db.service_schedules.find({"asset_id": asset["_id"], "asset_kind": kind.value})
                async for doc in cursor:
                    status = compute_service_status(
                        doc["name"],
                        doc["cycle"],
                        doc.get("last_service_rpm") or 0.0,
                        current_reading(asset),
                        self.due_soon_threshold,
                    )
                    if status.status == ServiceState.OK:
                        continue
                    alerts.append(ServiceAlert(
                        asset_id=asset["_id"],
                        asset_kind=kind,
                        asset_name=asset_display_name(asset, kind),
                        service_name=status.name,
                        current_reading=status.current_reading,
                        due_at=status.next_due_reading,
                        remaining=status.remaining,
                        status=status.status,
                    ))
        alerts.sort(key=lambda a: a.remaining)
        return alerts

    # --------------------------------------------------------
    # CONFIGURATION
    # --------------------------------------------------------

    async def list_schedules(self, asset_id: str, asset_kind: Optional[AssetKind] = None) -> List[ServiceScheduleConfig]:
        query = {"asset_id": asset_id}
        if asset_kind:
            query["asset_kind"] = AssetKind(asset_kind).value
        schedules = []
        async for doc in self.db.service_schedules.find(query).sort("name", 1):
            schedules.append(ServiceScheduleConfig(**doc))
        return schedules

    async def get_schedule(self, asset_id: str, name: str) -> ServiceScheduleConfig:
        doc = await self.db.service_schedules.find_one({"asset_id": asset_id, "name": name})
        if not doc:
            raise NotFoundError(f"Service '{name}' not configured for asset {asset_id}")
        return ServiceScheduleConfig(**doc)

    async def create_schedule(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        schedule: ServiceScheduleCreate,
    ) -> ServiceScheduleConfig:
        _, kind = await find_asset(self.db, asset_id, asset_kind)
        name = schedule.name.strip()
        if not name:
            raise ValidationError("Invalid service schedule", [{"field": "name", "message": "Name is required"}])

        now = datetime.utcnow()
        doc = {
            "_id": str(uuid.uuid4()),
            "asset_id": asset_id,
            "asset_kind": kind.value,
            "name": name,
            "cycle": schedule.cycle,
            "last_service_rpm": schedule.last_service_rpm,
            "next_due_rpm": schedule.last_service_rpm + schedule.cycle,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.db.service_schedules.insert_one(doc)
        except DuplicateKeyError:
            raise ConflictError(f"Service '{name}' already exists for asset {asset_id}")

        logger.info(f"Service schedule '{name}' created for {kind.value} {asset_id} (cycle {schedule.cycle})")
        return ServiceScheduleConfig(**doc)

    async def update_schedule(self, asset_id: str, name: str, changes: ServiceScheduleUpdate) -> ServiceScheduleConfig:
        current = await self.get_schedule(asset_id, name)
        cycle = changes.cycle if changes.cycle is not None else current.cycle
        last = changes.last_service_rpm if changes.last_service_rpm is not None else current.last_service_rpm

        doc = await self.db.service_schedules.find_one_and_update(
            {"asset_id": asset_id, "name": name},
            {"$set": {
                "cycle": cycle,
                "last_service_rpm": last,
                "next_due_rpm": last + cycle,
                "updated_at": datetime.utcnow(),
            }},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError(f"Service '{name}' not configured for asset {asset_id}")
        logger.info(f"Service schedule '{name}' of asset {asset_id} updated: cycle {cycle}, last {last}")
        return ServiceScheduleConfig(**doc)

    async def delete_schedule(self, asset_id: str, name: str) -> None:
        """Service history is kept"""
        result = await self.db.service_schedules.delete_one({"asset_id": asset_id, "name": name})
        if not result.deleted_count:
            raise NotFoundError(f"Service '{name}' not configured for asset {asset_id}")
        logger.info(f"Service schedule '{name}' of asset {asset_id} deleted")

    # --------------------------------------------------------
    # SERVICE RECORDS
    # --------------------------------------------------------

    async def record_service(self, asset_id: str, name: str, completion: ServiceCompletion) -> ServiceStatus:
        """Mark a service done at `service_rpm` and start the next cycle from there"""
        schedule = await self.get_schedule(asset_id, name)
        if completion.service_rpm < schedule.last_service_rpm:
            raise ValidationError(
                "Service reading precedes the last service",
                [{
                    "field": "service_rpm",
                    "message": f"Must be >= last service reading {schedule.last_service_rpm}",
                }],
            )

        # Guard on the last reading so two completions cannot both apply
        updated = await self.db.service_schedules.find_one_and_update(
            {"_id": schedule.id, "last_service_rpm": schedule.last_service_rpm},
            {"$set": {
                "last_service_rpm": completion.service_rpm,
                "next_due_rpm": completion.service_rpm + schedule.cycle,
                "updated_at": datetime.utcnow(),
            }},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError(f"Service '{name}' of asset {asset_id} was updated concurrently")

        await self.db.service_records.insert_one({
            "_id": str(uuid.uuid4()),
            "asset_id": asset_id,
            "asset_kind": schedule.asset_kind.value,
            "schedule_name": name,
            "service_date": completion.service_date.isoformat(),
            "service_rpm": completion.service_rpm,
            "previous_service_rpm": schedule.last_service_rpm,
            "remarks": completion.remarks,
            "created_at": datetime.utcnow(),
        })
        logger.info(f"Service '{name}' completed on asset {asset_id} at {completion.service_rpm}")

        asset, _ = await find_asset(self.db, asset_id, schedule.asset_kind)
        return compute_service_status(
            name, schedule.cycle, completion.service_rpm, current_reading(asset), self.due_soon_threshold
        )

    async def service_history(self, asset_id: str, name: Optional[str] = None) -> List[ServiceRecord]:
        query = {"asset_id": asset_id}
        if name:
            query["schedule_name"] = name
        records = []
        async for doc in self.db.service_records.find(query).sort("service_date", -1):
            records.append(ServiceRecord(**doc))
        return records
