"""
Daily Usage Routes for DrillTrack

Receives finalized daily operational entries (shift readings plus tool
actions) and turns them into drilling tool usage. Re-posting an entry for
the same asset-day is a correction; it replaces what the day credited.
"""

from fastapi import APIRouter, Depends, Query
from datetime import date
from typing import Optional
import logging

from models.daily_usage import DailyUsageSubmission
from models.drilling_tools import AssetKind
from services.engine_deps import get_usage_engine
from services.usage_accumulation import UsageAccumulationEngine

router = APIRouter(prefix="/api/daily-usage", tags=["daily-usage"])
logger = logging.getLogger(__name__)


@router.post("")
async def submit_daily_usage(
    submission: DailyUsageSubmission,
    engine: UsageAccumulationEngine = Depends(get_usage_engine),
):
    logger.info(
        f"Daily entry {submission.entry_id} received for {submission.asset_kind.value} "
        f"{submission.asset_id} on {submission.usage_date}"
    )
    result = await engine.submit_daily_usage(submission)
    return result.model_dump()


@router.delete("/{asset_kind}/{asset_id}/{usage_date}")
async def withdraw_daily_usage(
    asset_kind: AssetKind,
    asset_id: str,
    usage_date: date,
    entry_id: Optional[str] = Query(None, description="Operational record being deleted"),
    engine: UsageAccumulationEngine = Depends(get_usage_engine),
):
    result = await engine.withdraw_daily_usage(asset_kind, asset_id, usage_date, entry_id)
    return result.model_dump()
