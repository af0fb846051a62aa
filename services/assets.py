"""
Asset catalog access (machines and compressors).

The catalog itself is maintained elsewhere; the usage engine only reads
assets and raises their current counter reading.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase

from models.drilling_tools import AssetKind
from services.errors import NotFoundError

logger = logging.getLogger(__name__)

ASSET_COLLECTIONS = {
    AssetKind.MACHINE: "machines",
    AssetKind.COMPRESSOR: "compressors",
}


async def find_asset(
    db: AsyncIOMotorDatabase,
    asset_id: str,
    asset_kind: Optional[AssetKind] = None,
) -> Tuple[dict, AssetKind]:
    """Look an asset up by id, in one collection or in both"""
    kinds = [AssetKind(asset_kind)] if asset_kind else list(ASSET_COLLECTIONS)
    for kind in kinds:
        doc = await db[ASSET_COLLECTIONS[kind]].find_one({"_id": asset_id})
        if doc:
            return doc, kind
    raise NotFoundError(f"Asset {asset_id} not found")


def asset_display_name(doc: Optional[dict], asset_kind: AssetKind) -> Optional[str]:
    if not doc:
        return None
    if AssetKind(asset_kind) == AssetKind.COMPRESSOR:
        return doc.get("compressor_name") or doc.get("_id")
    label = f"{doc.get('machine_type') or ''} {doc.get('machine_number') or ''}".strip()
    return label or doc.get("_id")


def current_reading(doc: dict) -> float:
    return float(doc.get("current_rpm") or 0.0)


async def raise_asset_reading(
    db: AsyncIOMotorDatabase,
    asset_kind: AssetKind,
    asset_id: str,
    reading: Optional[float],
) -> None:
    """Move the asset counter forward; an older entry never lowers it"""
    if reading is None:
        return
    await db[ASSET_COLLECTIONS[AssetKind(asset_kind)]].update_one(
        {"_id": asset_id},
        {"$max": {"current_rpm": float(reading)}, "$set": {"updated_at": datetime.utcnow()}},
    )
