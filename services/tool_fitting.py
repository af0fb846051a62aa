"""
Tool Fitting Service

The single command behind the fitting screen. Fitting a tool touches the
site stock, the tool instance and the installation ledger; this service runs
them as one unit and undoes the earlier steps when a later one fails.

- Type-only fits reserve quantity from site_stock first and give it back if
  the ledger write fails.
- Serialized fits are reserved by the ledger's claim on the instance.
- Every command holds the asset-day lock of the day it acts on, so it is
  serialized with the daily entry for that asset and day.
"""

import logging
from contextlib import nullcontext
from datetime import datetime, date
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from models.drilling_tools import (
    AssetKind,
    AvailableComponent,
    DrillingTool,
    ToolInstance,
    ToolInstanceStatus,
    site_stock_id,
)
from models.installation import ByTypeOnly, FitRequest, Installation, RemoveRequest
from services.asset_locks import AssetDayLock
from services.assets import find_asset
from services.errors import NotFoundError, ValidationError
from services.installation_ledger import InstallationLedger

logger = logging.getLogger(__name__)


class ToolFittingService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        ledger: Optional[InstallationLedger] = None,
        lock: Optional[AssetDayLock] = None,
    ):
        self.db = db
        self.ledger = ledger or InstallationLedger(db)
        self.lock = lock or AssetDayLock(db)

    def _guard(self, hold_lock: bool, asset_kind: AssetKind, asset_id: str, day: date):
        if hold_lock:
            return self.lock.hold(AssetKind(asset_kind).value, asset_id, day.isoformat())
        return nullcontext()

    # --------------------------------------------------------
    # AVAILABILITY
    # --------------------------------------------------------

    async def list_available_components_for_asset(
        self,
        asset_id: str,
        asset_kind: Optional[AssetKind] = None,
    ) -> List[AvailableComponent]:
        """Serialized tools in stock at the asset's site plus untracked site stock"""
        asset, _ = await find_asset(self.db, asset_id, asset_kind)
        site_id = asset.get("site_id")

        instance_query = {
            "status": ToolInstanceStatus.IN_STOCK.value,
            "active_installation_id": None,
        }
        stock_query = {"quantity": {"$gt": 0}}
        if site_id:
            instance_query["site_id"] = site_id
            stock_query["site_id"] = site_id

        instances = []
        async for doc in self.db.tool_instances.find(instance_query).sort("serial_number", 1):
            instances.append(doc)
        stock_rows = []
        async for doc in self.db.site_stock.find(stock_query):
            stock_rows.append(doc)

        tool_ids = list({d["drilling_tool_id"] for d in instances + stock_rows})
        tools = {}
        async for tool in self.db.drilling_tools.find({"_id": {"$in": tool_ids}}):
            tools[tool["_id"]] = tool

        available = []
        for doc in instances:
            tool = tools.get(doc["drilling_tool_id"], {})
            available.append(AvailableComponent(
                kind="instance",
                drilling_tool_id=doc["drilling_tool_id"],
                tool_name=tool.get("name"),
                part_number=tool.get("part_number"),
                instance_id=doc["_id"],
                serial_number=doc.get("serial_number"),
                accumulated_meter=float(doc.get("initial_meter") or 0.0) + float(doc.get("total_meter") or 0.0),
            ))
        for row in stock_rows:
            tool = tools.get(row["drilling_tool_id"], {})
            available.append(AvailableComponent(
                kind="type",
                drilling_tool_id=row["drilling_tool_id"],
                tool_name=tool.get("name"),
                part_number=tool.get("part_number"),
                available_quantity=int(row["quantity"]),
            ))
        return available

    # --------------------------------------------------------
    # CATALOG READS
    # --------------------------------------------------------

    async def get_tool(self, drilling_tool_id: str) -> DrillingTool:
        doc = await self.db.drilling_tools.find_one({"_id": drilling_tool_id})
        if not doc:
            raise NotFoundError(f"Drilling tool {drilling_tool_id} not found")
        return DrillingTool(**doc)

    async def get_instance(self, instance_id: str) -> ToolInstance:
        doc = await self.db.tool_instances.find_one({"_id": instance_id})
        if not doc:
            raise NotFoundError(f"Tool instance {instance_id} not found")
        return ToolInstance(**doc)

    # --------------------------------------------------------
    # COMMANDS
    # --------------------------------------------------------

    async def fit_tool(self, request: FitRequest, hold_lock: bool = True) -> Installation:
        await find_asset(self.db, request.asset_id, request.asset_kind)

        async with self._guard(hold_lock, request.asset_kind, request.asset_id, request.fitted_date):
            ref = request.component_ref
            reserved = 0
            if isinstance(ref, ByTypeOnly):
                await self._reserve_stock(request.site_id, ref.drilling_tool_id, request.quantity)
                reserved = request.quantity

            try:
                return await self.ledger.fit(
                    asset_id=request.asset_id,
                    asset_kind=request.asset_kind,
                    site_id=request.site_id,
                    component_ref=ref,
                    fitted_date=request.fitted_date,
                    fitted_rpm=request.fitted_rpm,
                    fitted_meter=request.fitted_meter,
                    quantity=request.quantity,
                    daily_entry_id=request.daily_entry_id,
                    transaction_id=request.transaction_id,
                )
            except Exception:
                if reserved:
                    await self._release_stock(request.site_id, ref.drilling_tool_id, reserved)
                    logger.warning(
                        f"Released {reserved} x {ref.drilling_tool_id} back to site {request.site_id} after failed fit"
                    )
                raise

    async def remove_tool(
        self,
        installation_id: str,
        request: RemoveRequest,
        hold_lock: bool = True,
    ) -> Installation:
        installation = await self.ledger.get(installation_id)
        async with self._guard(hold_lock, installation.asset_kind, installation.asset_id, request.removed_date):
            return await self.ledger.remove(
                installation_id,
                removed_date=request.removed_date,
                removed_rpm=request.removed_rpm,
                removed_meter=request.removed_meter,
                daily_entry_id=request.daily_entry_id,
            )

    async def undo_pending_fit(self, installation_id: str, transaction_id: str, hold_lock: bool = True) -> Installation:
        installation = await self.ledger.get(installation_id)
        async with self._guard(hold_lock, installation.asset_kind, installation.asset_id, installation.fitted_date):
            undone = await self.ledger.undo_pending_fit(installation_id, transaction_id)
            if isinstance(undone.component_ref, ByTypeOnly):
                await self._release_stock(undone.site_id, undone.drilling_tool_id, undone.quantity)
            return undone

    # --------------------------------------------------------
    # SITE STOCK
    # --------------------------------------------------------

    async def _reserve_stock(self, site_id: str, drilling_tool_id: str, quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError(
                "Invalid quantity",
                [{"field": "quantity", "message": "Quantity must be greater than 0"}],
            )

        stock_id = site_stock_id(site_id, drilling_tool_id)
        reserved = await self.db.site_stock.find_one_and_update(
            {"_id": stock_id, "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity}, "$set": {"updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if reserved is None:
            stock = await self.db.site_stock.find_one({"_id": stock_id})
            available = int(stock["quantity"]) if stock else 0
            raise ValidationError(
                "Insufficient stock for this tool at the site",
                [{
                    "field": "quantity",
                    "message": f"Requested {quantity}, available {available} at site {site_id}",
                }],
            )
        logger.info(f"Reserved {quantity} x {drilling_tool_id} at site {site_id}, {reserved['quantity']} left")

    async def _release_stock(self, site_id: str, drilling_tool_id: str, quantity: int) -> None:
        await self.db.site_stock.update_one(
            {"_id": site_stock_id(site_id, drilling_tool_id)},
            {
                "$inc": {"quantity": quantity},
                "$set": {"updated_at": datetime.utcnow()},
                "$setOnInsert": {"site_id": site_id, "drilling_tool_id": drilling_tool_id},
            },
            upsert=True,
        )
