from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Optional
import logging

from models.drilling_tools import DRILLING_TOOLS_INDEXES, TOOL_INSTANCES_INDEXES
from models.installation import (
    TOOL_INSTALLATIONS_INDEXES,
    TOOL_USAGE_LOGS_INDEXES,
    USAGE_ATTRIBUTIONS_INDEXES,
)
from models.service_schedule import SERVICE_SCHEDULES_INDEXES, SERVICE_RECORDS_INDEXES

logger = logging.getLogger(__name__)

# collection name -> index specs
COLLECTION_INDEXES = {
    "drilling_tools": DRILLING_TOOLS_INDEXES,
    "tool_instances": TOOL_INSTANCES_INDEXES,
    "tool_installations": TOOL_INSTALLATIONS_INDEXES,
    "tool_usage_logs": TOOL_USAGE_LOGS_INDEXES,
    "usage_attributions": USAGE_ATTRIBUTIONS_INDEXES,
    "service_schedules": SERVICE_SCHEDULES_INDEXES,
    "service_records": SERVICE_RECORDS_INDEXES,
}

class Database:
    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self, mongo_url: str, db_name: str):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[db_name]
            # Verify connection
            await self.client.admin.command('ping')
            logger.info(f"Connected to MongoDB database: {db_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def get_db(self) -> AsyncIOMotorDatabase:
        """Get database instance"""
        if self.db is None:
            raise Exception("Database not connected")
        return self.db

db = Database()

async def get_database() -> AsyncIOMotorDatabase:
    return db.get_db()


async def ensure_indexes(database: AsyncIOMotorDatabase) -> None:
    """
    Create the indexes declared next to the models.

    Safe to call on every startup; existing indexes are left untouched.
    """
    for collection_name, specs in COLLECTION_INDEXES.items():
        collection = database[collection_name]
        for idx_spec in specs:
            options = {"name": idx_spec["name"], "unique": idx_spec.get("unique", False)}
            if "partialFilterExpression" in idx_spec:
                options["partialFilterExpression"] = idx_spec["partialFilterExpression"]
            await collection.create_index(idx_spec["keys"], **options)
        logger.debug(f"Indexes ensured for {collection_name}")
    logger.info("Usage engine indexes ensured")
