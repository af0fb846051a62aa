from pydantic import BaseModel
from typing import Optional
from datetime import date

from models.drilling_tools import AssetKind
from models.installation import InstallationStatus


class UsageReportRow(BaseModel):
    """One installation joined with tool, asset and site metadata"""
    installation_id: str
    tool_name: Optional[str] = None
    part_number: Optional[str] = None
    serial_number: Optional[str] = None
    rpm_source: AssetKind
    machine: Optional[str] = None
    machine_id: str
    site: Optional[str] = None
    site_id: str
    fitted_date: date
    fitted_rpm: Optional[float] = None
    removed_date: Optional[date] = None
    removed_rpm: Optional[float] = None
    accumulated_meter: float = 0.0
    status: InstallationStatus
