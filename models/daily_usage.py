"""
Daily Usage Model

A finalized daily operational entry for one asset: up to two shifts of
opening/closing counter readings plus the output meter drilled in each
shift, and the tool actions (fit / remove / update) taken that day.

Collection: daily_usage (last accepted submission per asset-day)
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date

from models.drilling_tools import AssetKind
from models.installation import UsageAction


class ShiftReading(BaseModel):
    shift: int = Field(..., ge=1, le=2)
    enabled: bool = True
    opening_rpm: Optional[float] = None
    closing_rpm: Optional[float] = None
    meter: float = 0.0  # output drilled in this shift, independent of RPM


class ToolAction(BaseModel):
    """
    One tool action recorded with the daily entry.

    fit    -> instance_id (serialized) or drilling_tool_id + quantity (type only)
    remove -> installation_id
    update -> nothing extra; usage is credited to every active installation
    """
    action: UsageAction
    installation_id: Optional[str] = None
    instance_id: Optional[str] = None
    drilling_tool_id: Optional[str] = None
    quantity: int = 1
    fitted_rpm: Optional[float] = None  # defaults to the day's first opening reading
    fitted_meter: float = 0.0


class DailyUsageSubmission(BaseModel):
    entry_id: str
    supersedes_entry_id: Optional[str] = None
    asset_id: str
    asset_kind: AssetKind
    site_id: str
    usage_date: date
    shifts: List[ShiftReading] = []
    tool_actions: List[ToolAction] = []


class UsageWarning(BaseModel):
    field: str
    message: str
    asset_id: Optional[str] = None
    installation_id: Optional[str] = None


class DailyDeltas(BaseModel):
    rotational: float = 0.0
    output: float = 0.0
    closing_rpm: Optional[float] = None  # highest closing reading of the day
    warnings: List[UsageWarning] = []


class DailyUsageResult(BaseModel):
    entry_id: str
    asset_id: str
    asset_kind: AssetKind
    usage_date: date
    rotational_delta: float
    output_delta: float
    credited_installations: List[str] = []
    fitted_installations: List[str] = []
    removed_installations: List[str] = []
    warnings: List[UsageWarning] = []


def daily_usage_id(asset_kind: str, asset_id: str, usage_date: str) -> str:
    return f"{asset_kind}:{asset_id}:{usage_date}"
