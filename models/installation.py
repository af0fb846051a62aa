"""
Tool Installation Model

One continuous fitting of a drilling tool onto a machine or compressor,
the append-only action log written against it, and the per-day usage
attribution index that lets corrected daily entries replace (not add to)
what was credited before.

Collections: tool_installations, tool_usage_logs, usage_attributions
"""

from pydantic import BaseModel, Field
from typing import Optional, Union, Literal, Annotated
from datetime import datetime, date
from enum import Enum

from models.drilling_tools import AssetKind


class InstallationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class UsageAction(str, Enum):
    FIT = "fit"
    REMOVE = "remove"
    UPDATE = "update"


class ByInstance(BaseModel):
    """Installation of one serialized tool unit (lifecycle tracked)"""
    kind: Literal["instance"] = "instance"
    instance_id: str
    drilling_tool_id: Optional[str] = None  # resolved from the instance


class ByTypeOnly(BaseModel):
    """Fire-and-forget consumption of a tool type from site stock"""
    kind: Literal["type"] = "type"
    drilling_tool_id: str


ComponentRef = Annotated[Union[ByInstance, ByTypeOnly], Field(discriminator="kind")]


class Installation(BaseModel):
    id: str = Field(alias="_id")
    component_ref: ComponentRef
    drilling_tool_id: str
    tool_instance_id: Optional[str] = None
    asset_id: str
    asset_kind: AssetKind
    site_id: str
    status: InstallationStatus = InstallationStatus.ACTIVE
    quantity: int = 1

    # Fitted side, immutable after creation
    fitted_date: date
    fitted_rpm: float = 0.0
    fitted_meter: float = 0.0

    # Removed side, null while ACTIVE
    removed_date: Optional[date] = None
    removed_rpm: Optional[float] = None
    removed_meter: Optional[float] = None

    # Running totals
    initial_accumulated_meter: float = 0.0
    current_accumulated_meter: float = 0.0
    accumulated_rpm: float = 0.0
    current_rpm: Optional[float] = None
    usage_days: int = 0

    transaction_id: Optional[str] = None
    daily_entry_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @property
    def is_active(self) -> bool:
        return self.status == InstallationStatus.ACTIVE

    @property
    def meter_this_installation(self) -> float:
        return self.current_accumulated_meter - self.initial_accumulated_meter


class UsageLogEntry(BaseModel):
    """Append-only record of one fit/remove/update action"""
    id: str = Field(alias="_id")
    installation_id: str
    drilling_tool_id: str
    tool_instance_id: Optional[str] = None
    asset_id: str
    asset_kind: AssetKind
    site_id: str
    daily_entry_id: Optional[str] = None
    action: UsageAction
    action_date: date
    quantity: int = 1
    asset_rpm: Optional[float] = None
    asset_meter: Optional[float] = None
    accumulated_meter: Optional[float] = None
    delta_rpm: float = 0.0
    delta_meter: float = 0.0
    created_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class UsageAttribution(BaseModel):
    """How much of an installation's totals came from one asset-day"""
    id: str = Field(alias="_id")
    installation_id: str
    usage_date: date
    rpm: float = 0.0
    meter: float = 0.0
    daily_entry_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


def attribution_id(installation_id: str, usage_date: str) -> str:
    return f"{installation_id}:{usage_date}"


# ============================================================
# REQUEST BODIES
# ============================================================

class FitRequest(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    site_id: str
    component_ref: ComponentRef
    fitted_date: date
    fitted_rpm: float = Field(..., ge=0.0, description="Asset reading at fit time")
    fitted_meter: float = Field(default=0.0, ge=0.0)
    quantity: int = 1
    daily_entry_id: Optional[str] = None
    transaction_id: Optional[str] = None


class RemoveRequest(BaseModel):
    removed_date: date
    removed_rpm: float = Field(..., ge=0.0, description="Asset reading at removal")
    removed_meter: Optional[float] = Field(default=None, ge=0.0)
    daily_entry_id: Optional[str] = None


class UndoFitRequest(BaseModel):
    transaction_id: str


# ============================================================
# INDEX DEFINITION
# ============================================================

TOOL_INSTALLATIONS_INDEXES = [
    {
        "keys": [("asset_id", 1), ("status", 1)],
        "name": "asset_status_idx"
    },
    {
        "keys": [("tool_instance_id", 1), ("status", 1)],
        "name": "instance_status_idx"
    },
    {
        "keys": [("site_id", 1), ("fitted_date", -1)],
        "name": "site_fitted_idx"
    },
]

TOOL_USAGE_LOGS_INDEXES = [
    {
        "keys": [("installation_id", 1), ("created_at", 1)],
        "name": "installation_time_idx"
    },
    {
        "keys": [("daily_entry_id", 1)],
        "name": "daily_entry_idx"
    },
]

USAGE_ATTRIBUTIONS_INDEXES = [
    {
        "keys": [("installation_id", 1), ("usage_date", 1)],
        "unique": True,
        "name": "installation_day_unique"
    },
]
