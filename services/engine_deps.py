"""
Service dependencies for the DrillTrack routes
Builds the usage engine services from the request's database and settings
"""

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import get_settings
from database.mongodb import get_database
from services.asset_locks import AssetDayLock
from services.installation_ledger import InstallationLedger
from services.schedule_evaluator import ScheduleEvaluator
from services.tool_fitting import ToolFittingService
from services.usage_accumulation import UsageAccumulationEngine
from services.usage_reports import UsageReportService


def _asset_day_lock(db: AsyncIOMotorDatabase) -> AssetDayLock:
    settings = get_settings()
    return AssetDayLock(
        db,
        timeout_seconds=settings.lock_timeout_seconds,
        ttl_seconds=settings.lock_ttl_seconds,
        poll_interval=settings.lock_poll_interval_seconds,
    )


async def get_ledger(db: AsyncIOMotorDatabase = Depends(get_database)) -> InstallationLedger:
    return InstallationLedger(db)


async def get_fitting_service(db: AsyncIOMotorDatabase = Depends(get_database)) -> ToolFittingService:
    return ToolFittingService(db, lock=_asset_day_lock(db))


async def get_usage_engine(db: AsyncIOMotorDatabase = Depends(get_database)) -> UsageAccumulationEngine:
    return UsageAccumulationEngine(
        db,
        lock=_asset_day_lock(db),
        max_shifts_per_day=get_settings().max_shifts_per_day,
    )


async def get_schedule_evaluator(db: AsyncIOMotorDatabase = Depends(get_database)) -> ScheduleEvaluator:
    return ScheduleEvaluator(db, due_soon_threshold=get_settings().due_soon_threshold)


async def get_report_service(db: AsyncIOMotorDatabase = Depends(get_database)) -> UsageReportService:
    return UsageReportService(db)
