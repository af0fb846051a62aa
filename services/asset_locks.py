"""
Asset-day lock

Serializes daily entry processing per (asset, day). The lock is a document
in asset_day_locks whose _id is the asset-day key; MongoDB's unique _id makes
the insert the atomic acquire. A second writer polls until the holder
releases or the wait times out. Locks older than the TTL are considered
abandoned (crashed worker) and reclaimed.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from services.errors import ConflictError

logger = logging.getLogger(__name__)


def lock_key(asset_kind: str, asset_id: str, usage_date: str) -> str:
    return f"{asset_kind}:{asset_id}:{usage_date}"


class AssetDayLock:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        timeout_seconds: float = 10.0,
        ttl_seconds: float = 60.0,
        poll_interval: float = 0.05,
    ):
        self.db = db
        self.timeout_seconds = timeout_seconds
        self.ttl_seconds = ttl_seconds
        self.poll_interval = poll_interval

    @asynccontextmanager
    async def hold(self, asset_kind: str, asset_id: str, usage_date: str):
        key = lock_key(asset_kind, asset_id, usage_date)
        token = str(uuid.uuid4())
        await self._acquire(key, token)
        try:
            yield token
        finally:
            await self._release(key, token)

    async def _acquire(self, key: str, token: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        waited = False

        while True:
            try:
                await self.db.asset_day_locks.insert_one({
                    "_id": key,
                    "owner": token,
                    "acquired_at": datetime.utcnow(),
                })
                if waited:
                    logger.info(f"Acquired asset-day lock {key} after waiting")
                return
            except DuplicateKeyError:
                pass

            stale_before = datetime.utcnow() - timedelta(seconds=self.ttl_seconds)
            reclaimed = await self.db.asset_day_locks.delete_one({
                "_id": key,
                "acquired_at": {"$lt": stale_before},
            })
            if reclaimed.deleted_count:
                logger.warning(f"Reclaimed abandoned asset-day lock {key}")
                continue

            if loop.time() >= deadline:
                raise ConflictError(
                    f"Another entry for {key} is being processed; retry once it has been saved"
                )

            if not waited:
                logger.info(f"Waiting for asset-day lock {key}")
                waited = True
            await asyncio.sleep(self.poll_interval)

    async def _release(self, key: str, token: str) -> None:
        # Only the holder may release; a reclaimed lock belongs to someone else now
        await self.db.asset_day_locks.delete_one({"_id": key, "owner": token})
