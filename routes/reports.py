"""
Drilling Tool Usage Report Routes for DrillTrack
"""

from fastapi import APIRouter, Depends, Query
from datetime import date
from typing import Optional
import logging

from services.engine_deps import get_report_service
from services.usage_reports import UsageReportService

router = APIRouter(prefix="/api/reports/drilling-tools", tags=["reports"])
logger = logging.getLogger(__name__)


@router.get("/machine-wise")
async def machine_wise_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    asset_id: Optional[str] = Query(None),
    site_id: Optional[str] = Query(None),
    reports: UsageReportService = Depends(get_report_service),
):
    rows = await reports.machine_wise(start_date, end_date, asset_id, site_id)
    return [r.model_dump() for r in rows]


@router.get("/site-wise")
async def site_wise_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    asset_id: Optional[str] = Query(None),
    site_id: Optional[str] = Query(None),
    reports: UsageReportService = Depends(get_report_service),
):
    rows = await reports.site_wise(start_date, end_date, asset_id, site_id)
    return [r.model_dump() for r in rows]
