"""
Drilling Tools Model

Catalog entries for installable drilling tools, the serialized units of
each tool, and the untracked quantity held at each site.

Collections: drilling_tools, tool_instances, site_stock
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class AssetKind(str, Enum):
    """Kinds of durable equipment that host drilling tools"""
    MACHINE = "machine"
    COMPRESSOR = "compressor"


class ToolInstanceStatus(str, Enum):
    IN_STOCK = "In Stock"
    FITTED = "Fitted"
    DISCARDED = "Discarded"
    UNDER_REPAIR = "Under Repair"


class DrillingTool(BaseModel):
    """Catalog entry for a kind of drilling tool (e.g. a bit model)"""
    id: str = Field(alias="_id")
    name: str = Field(..., min_length=1)
    part_number: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(default=0.0, ge=0.0, description="Base price")
    rpm_source: AssetKind = Field(
        default=AssetKind.MACHINE,
        description="Which asset counter the tool is usually read against"
    )
    # Lifetime totals, written only by the usage engine with $inc
    total_rpm: float = 0.0
    total_meter: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class ToolInstance(BaseModel):
    """One physical unit of a drilling tool"""
    id: str = Field(alias="_id")
    drilling_tool_id: str
    serial_number: Optional[str] = None
    site_id: Optional[str] = None
    status: ToolInstanceStatus = ToolInstanceStatus.IN_STOCK
    initial_meter: float = 0.0
    total_rpm: float = 0.0
    total_meter: float = 0.0
    active_installation_id: Optional[str] = None
    fitted_asset_id: Optional[str] = None
    fitted_asset_kind: Optional[AssetKind] = None

    class Config:
        populate_by_name = True


class AvailableComponent(BaseModel):
    """A tool that can be fitted to an asset right now"""
    kind: str  # "instance" or "type"
    drilling_tool_id: str
    tool_name: Optional[str] = None
    part_number: Optional[str] = None
    instance_id: Optional[str] = None
    serial_number: Optional[str] = None
    accumulated_meter: float = 0.0
    available_quantity: int = 1


def site_stock_id(site_id: str, drilling_tool_id: str) -> str:
    return f"{site_id}:{drilling_tool_id}"


# ============================================================
# INDEX DEFINITION
# ============================================================

DRILLING_TOOLS_INDEXES = [
    {
        "keys": [("part_number", 1)],
        "name": "part_number_idx"
    },
]

TOOL_INSTANCES_INDEXES = [
    {
        "keys": [("serial_number", 1)],
        "unique": True,
        "partialFilterExpression": {"serial_number": {"$type": "string"}},
        "name": "serial_number_unique"
    },
    {
        "keys": [("site_id", 1), ("status", 1)],
        "name": "site_status_idx"
    },
    {
        "keys": [("drilling_tool_id", 1)],
        "name": "drilling_tool_idx"
    },
]
