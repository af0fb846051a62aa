"""
Service Schedule Model

Named service types attached to a machine or compressor, each with an RPM
cycle and the reading at the last completed service, plus the history of
completed services.

Collections: service_schedules, service_records
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date
from enum import Enum

from models.drilling_tools import AssetKind


class ServiceState(str, Enum):
    OK = "OK"
    DUE_SOON = "DueSoon"
    OVERDUE = "Overdue"


class ServiceScheduleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    cycle: float = Field(..., gt=0.0, description="RPM units between services")
    last_service_rpm: float = Field(default=0.0, ge=0.0)


class ServiceScheduleUpdate(BaseModel):
    cycle: Optional[float] = Field(default=None, gt=0.0)
    last_service_rpm: Optional[float] = Field(default=None, ge=0.0)


class ServiceScheduleConfig(BaseModel):
    id: str = Field(alias="_id")
    asset_id: str
    asset_kind: AssetKind
    name: str
    cycle: float
    last_service_rpm: float = 0.0
    next_due_rpm: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class ServiceStatus(BaseModel):
    """Derived, never stored"""
    name: str
    cycle: float
    last_service_reading: float
    next_due_reading: float
    current_reading: float
    remaining: float
    status: ServiceState
    percent_remaining: float


class ServiceCompletion(BaseModel):
    service_rpm: float = Field(..., ge=0.0)
    service_date: date
    remarks: Optional[str] = None


class ServiceRecord(BaseModel):
    id: str = Field(alias="_id")
    asset_id: str
    asset_kind: AssetKind
    schedule_name: str
    service_date: date
    service_rpm: float
    previous_service_rpm: Optional[float] = None
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class ServiceAlert(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    asset_name: str
    service_name: str
    current_reading: float
    due_at: float
    remaining: float
    status: ServiceState


# ============================================================
# INDEX DEFINITION
# ============================================================

SERVICE_SCHEDULES_INDEXES = [
    {
        "keys": [("asset_id", 1), ("name", 1)],
        "unique": True,
        "name": "asset_schedule_name_unique"
    },
]

SERVICE_RECORDS_INDEXES = [
    {
        "keys": [("asset_id", 1), ("service_date", -1)],
        "name": "asset_service_date_idx"
    },
]
