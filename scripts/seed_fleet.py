#!/usr/bin/env python3
"""
Seed a Demo Fleet for the Usage Engine

Creates two sites, a few machines and compressors, drilling tool types,
serialized tool instances, untracked site stock and service schedules,
then creates the usage engine indexes.

These are EXAMPLE records only.

Usage:
    python scripts/seed_fleet.py
"""

import asyncio
import sys
import os
from datetime import datetime

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from database.mongodb import ensure_indexes
from models.drilling_tools import ToolInstanceStatus, site_stock_id

load_dotenv()


SITES = [
    {"_id": "site-north", "site_name": "North Quarry"},
    {"_id": "site-river", "site_name": "River Cut"},
]

MACHINES = [
    {"_id": "mc-101", "machine_type": "DTH Rig", "machine_number": "101", "site_id": "site-north", "current_rpm": 1460.0},
    {"_id": "mc-102", "machine_type": "DTH Rig", "machine_number": "102", "site_id": "site-north", "current_rpm": 320.0},
    {"_id": "mc-201", "machine_type": "Top Hammer", "machine_number": "201", "site_id": "site-river", "current_rpm": 2210.0},
]

COMPRESSORS = [
    {"_id": "cp-01", "compressor_name": "Atlas 900", "site_id": "site-north", "current_rpm": 880.0},
    {"_id": "cp-02", "compressor_name": "Elgi 750", "site_id": "site-river", "current_rpm": 1500.0},
]

DRILLING_TOOLS = [
    {"_id": "tool-hammer-115", "name": "DTH Hammer 115mm", "part_number": "HM-115", "category": "Hammer", "price": 1850.0, "rpm_source": "machine"},
    {"_id": "tool-bit-115", "name": "Button Bit 115mm", "part_number": "BB-115", "category": "Bit", "price": 240.0, "rpm_source": "machine"},
    {"_id": "tool-rod-3m", "name": "Drill Rod 3m", "part_number": "DR-3000", "category": "Rod", "price": 310.0, "rpm_source": "machine"},
    {"_id": "tool-filter", "name": "Compressor Air Filter", "part_number": "AF-20", "category": "Filter", "price": 45.0, "rpm_source": "compressor"},
]

TOOL_INSTANCES = [
    {"_id": "inst-hm-0001", "drilling_tool_id": "tool-hammer-115", "serial_number": "HM115-0001", "site_id": "site-north", "initial_meter": 0.0},
    {"_id": "inst-hm-0002", "drilling_tool_id": "tool-hammer-115", "serial_number": "HM115-0002", "site_id": "site-north", "initial_meter": 412.5},
    {"_id": "inst-bb-0001", "drilling_tool_id": "tool-bit-115", "serial_number": "BB115-0001", "site_id": "site-north", "initial_meter": 0.0},
    {"_id": "inst-hm-0003", "drilling_tool_id": "tool-hammer-115", "serial_number": "HM115-0003", "site_id": "site-river", "initial_meter": 0.0},
]

SITE_STOCK = [
    ("site-north", "tool-rod-3m", 12),
    ("site-north", "tool-filter", 6),
    ("site-river", "tool-rod-3m", 8),
]

SERVICE_SCHEDULES = [
    ("mc-101", "machine", "Engine Oil", 500.0, 1000.0),
    ("mc-101", "machine", "Hydraulic Filter", 1000.0, 1000.0),
    ("mc-201", "machine", "Engine Oil", 500.0, 1500.0),
    ("cp-02", "compressor", "Air Filter", 250.0, 1200.0),
]


async def _upsert_all(collection, docs, now):
    inserted = 0
    updated = 0
    for doc in docs:
        result = await collection.update_one(
            {"_id": doc["_id"]},
            {"$set": {**doc, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True
        )
        if result.upserted_id:
            inserted += 1
        elif result.modified_count:
            updated += 1
    return inserted, updated


async def seed_fleet():
    """Seed sites, assets, tools and schedules"""

    mongo_url = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
    db_name = os.environ.get("DB_NAME", "drilltrack")

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    print("=" * 60)
    print("SEEDING DEMO FLEET")
    print("=" * 60)

    now = datetime.utcnow()

    for name, docs in (
        ("sites", SITES),
        ("machines", MACHINES),
        ("compressors", COMPRESSORS),
    ):
        inserted, updated = await _upsert_all(db[name], docs, now)
        print(f"  {name}: {inserted} inserted, {updated} updated")

    # Lifetime totals are owned by the engine; only set them on first insert
    for tool in DRILLING_TOOLS:
        await db.drilling_tools.update_one(
            {"_id": tool["_id"]},
            {"$set": {**tool, "updated_at": now}, "$setOnInsert": {"total_rpm": 0.0, "total_meter": 0.0, "created_at": now}},
            upsert=True
        )
    print(f"  drilling_tools: {len(DRILLING_TOOLS)} upserted")

    for instance in TOOL_INSTANCES:
        await db.tool_instances.update_one(
            {"_id": instance["_id"]},
            {
                "$set": {**instance, "updated_at": now},
                "$setOnInsert": {
                    "status": ToolInstanceStatus.IN_STOCK.value,
                    "active_installation_id": None,
                    "fitted_asset_id": None,
                    "fitted_asset_kind": None,
                    "total_rpm": 0.0,
                    "total_meter": 0.0,
                    "created_at": now,
                },
            },
            upsert=True
        )
    print(f"  tool_instances: {len(TOOL_INSTANCES)} upserted")

    for site_id, tool_id, quantity in SITE_STOCK:
        await db.site_stock.update_one(
            {"_id": site_stock_id(site_id, tool_id)},
            {"$set": {"site_id": site_id, "drilling_tool_id": tool_id, "quantity": quantity, "updated_at": now}},
            upsert=True
        )
    print(f"  site_stock: {len(SITE_STOCK)} rows set")

    # Create indexes before the schedules so the unique name index applies
    print("\nCreating indexes...")
    await ensure_indexes(db)
    print("  Indexes created")

    for asset_id, asset_kind, name, cycle, last in SERVICE_SCHEDULES:
        await db.service_schedules.update_one(
            {"asset_id": asset_id, "name": name},
            {
                "$set": {
                    "asset_kind": asset_kind,
                    "cycle": cycle,
                    "last_service_rpm": last,
                    "next_due_rpm": last + cycle,
                    "updated_at": now,
                },
                "$setOnInsert": {"_id": f"{asset_id}:{name}", "created_at": now},
            },
            upsert=True
        )
    print(f"  service_schedules: {len(SERVICE_SCHEDULES)} upserted")

    # Summary
    print("\n" + "=" * 60)
    print("SEED COMPLETE")
    for name in ("sites", "machines", "compressors", "drilling_tools", "tool_instances", "site_stock", "service_schedules"):
        print(f"  {name}: {await db[name].count_documents({})} documents")
    print("=" * 60)

    client.close()


if __name__ == "__main__":
    asyncio.run(seed_fleet())
