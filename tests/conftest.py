"""
Shared fixtures: an in-memory Motor database and a small seeded fleet.

Site S1 holds machine M1 (reading 1000), compressor C1, two hammer
instances (T1 fresh, U1 fresh), a bit instance B1 that already ran 100 meter,
and 5 drill rods of untracked stock.
"""

import os

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "drilltrack_test")

import pytest
from mongomock_motor import AsyncMongoMockClient

from models.drilling_tools import ToolInstanceStatus, site_stock_id
from models.service_schedule import SERVICE_SCHEDULES_INDEXES


async def seed_fleet(db):
    await db.sites.insert_one({"_id": "S1", "site_name": "North Quarry"})
    await db.sites.insert_one({"_id": "S2", "site_name": "East Pit"})
    await db.machines.insert_one({
        "_id": "M1", "machine_type": "DTH Rig", "machine_number": "101",
        "site_id": "S1", "current_rpm": 1000.0,
    })
    await db.machines.insert_one({
        "_id": "M2", "machine_type": "Top Hammer", "machine_number": "7",
        "site_id": "S2", "current_rpm": 200.0,
    })
    await db.compressors.insert_one({
        "_id": "C1", "compressor_name": "Atlas 900", "site_id": "S1", "current_rpm": 500.0,
    })

    for tool_id, name, part in (
        ("HAMMER", "DTH Hammer 115mm", "HM-115"),
        ("BIT", "Button Bit 115mm", "BB-115"),
        ("ROD", "Drill Rod 3m", "DR-3000"),
    ):
        await db.drilling_tools.insert_one({
            "_id": tool_id, "name": name, "part_number": part,
            "rpm_source": "machine", "total_rpm": 0.0, "total_meter": 0.0,
        })

    for instance_id, tool_id, serial, initial in (
        ("T1", "HAMMER", "HM-0001", 0.0),
        ("U1", "HAMMER", "HM-0002", 0.0),
        ("B1", "BIT", "BB-0001", 100.0),
    ):
        await db.tool_instances.insert_one({
            "_id": instance_id, "drilling_tool_id": tool_id, "serial_number": serial,
            "site_id": "S1", "status": ToolInstanceStatus.IN_STOCK.value,
            "initial_meter": initial, "total_rpm": 0.0, "total_meter": 0.0,
            "active_installation_id": None,
        })

    await db.site_stock.insert_one({
        "_id": site_stock_id("S1", "ROD"), "site_id": "S1", "drilling_tool_id": "ROD", "quantity": 5,
    })

    index = SERVICE_SCHEDULES_INDEXES[0]
    await db.service_schedules.create_index(index["keys"], unique=True, name=index["name"])
    return db


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client["drilltrack_test"]


@pytest.fixture
async def fleet(db):
    return await seed_fleet(db)
