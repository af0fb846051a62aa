"""
Service Schedule Routes for DrillTrack

Per-asset service types (cycle in RPM units) and their due state.
Status is always computed from the asset's current reading, never stored.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from models.drilling_tools import AssetKind
from models.service_schedule import ServiceCompletion, ServiceScheduleCreate, ServiceScheduleUpdate
from services.engine_deps import get_schedule_evaluator
from services.schedule_evaluator import ScheduleEvaluator

router = APIRouter(prefix="/api/service-schedules", tags=["service-schedules"])
logger = logging.getLogger(__name__)


# Declared before the asset routes so "alerts" is not taken for an asset kind
@router.get("/alerts")
async def list_service_alerts(evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator)):
    """DueSoon and Overdue services across all machines and compressors"""
    alerts = await evaluator.service_alerts()
    return [a.model_dump() for a in alerts]


@router.get("/{asset_kind}/{asset_id}")
async def list_schedules(
    asset_kind: AssetKind,
    asset_id: str,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    schedules = await evaluator.list_schedules(asset_id, asset_kind)
    return [s.model_dump() for s in schedules]


@router.post("/{asset_kind}/{asset_id}", status_code=status.HTTP_201_CREATED)
async def create_schedule(
    asset_kind: AssetKind,
    asset_id: str,
    schedule: ServiceScheduleCreate,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    created = await evaluator.create_schedule(asset_id, asset_kind, schedule)
    return created.model_dump()


@router.get("/{asset_kind}/{asset_id}/status")
async def evaluate_schedules(
    asset_kind: AssetKind,
    asset_id: str,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    statuses = await evaluator.evaluate(asset_id, asset_kind)
    return [s.model_dump() for s in statuses]


@router.get("/{asset_kind}/{asset_id}/history")
async def service_history(
    asset_kind: AssetKind,
    asset_id: str,
    name: Optional[str] = Query(None, description="Only this service type"),
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    records = await evaluator.service_history(asset_id, name)
    return [r.model_dump() for r in records]


@router.put("/{asset_kind}/{asset_id}/{name}")
async def update_schedule(
    asset_kind: AssetKind,
    asset_id: str,
    name: str,
    changes: ServiceScheduleUpdate,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    updated = await evaluator.update_schedule(asset_id, name, changes)
    return updated.model_dump()


@router.delete("/{asset_kind}/{asset_id}/{name}")
async def delete_schedule(
    asset_kind: AssetKind,
    asset_id: str,
    name: str,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    await evaluator.delete_schedule(asset_id, name)
    return {"message": "Service schedule deleted", "asset_id": asset_id, "name": name}


@router.post("/{asset_kind}/{asset_id}/{name}/complete")
async def complete_service(
    asset_kind: AssetKind,
    asset_id: str,
    name: str,
    completion: ServiceCompletion,
    evaluator: ScheduleEvaluator = Depends(get_schedule_evaluator),
):
    """Record a completed service; the next cycle starts at the service reading"""
    result = await evaluator.record_service(asset_id, name, completion)
    return result.model_dump()
