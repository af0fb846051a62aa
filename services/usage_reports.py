"""
Drilling tool usage reports.

Read-only projections of the installation ledger joined with tool, instance,
asset and site metadata. Filters are inclusive on fitted_date.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from models.drilling_tools import AssetKind
from models.usage_report import UsageReportRow
from services.assets import ASSET_COLLECTIONS, asset_display_name

logger = logging.getLogger(__name__)


class UsageReportService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def machine_wise(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        asset_id: Optional[str] = None,
        site_id: Optional[str] = None,
    ) -> List[UsageReportRow]:
        rows = await self._rows(start_date, end_date, asset_id, site_id)
        rows.sort(key=lambda r: r.fitted_date, reverse=True)
        return rows

    async def site_wise(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        asset_id: Optional[str] = None,
        site_id: Optional[str] = None,
    ) -> List[UsageReportRow]:
        rows = await self._rows(start_date, end_date, asset_id, site_id)
        # Two stable passes: newest first inside each site
        rows.sort(key=lambda r: r.fitted_date, reverse=True)
        rows.sort(key=lambda r: (r.site or r.site_id).lower())
        return rows

    async def _rows(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        asset_id: Optional[str],
        site_id: Optional[str],
    ) -> List[UsageReportRow]:
        query = {}
        if asset_id:
            query["asset_id"] = asset_id
        if site_id:
            query["site_id"] = site_id
        if start_date or end_date:
            query["fitted_date"] = {}
            if start_date:
                query["fitted_date"]["$gte"] = start_date.isoformat()
            if end_date:
                query["fitted_date"]["$lte"] = end_date.isoformat()

        installations = []
        async for doc in self.db.tool_installations.find(query):
            installations.append(doc)
        if not installations:
            return []

        tools = await self._by_id("drilling_tools", {i["drilling_tool_id"] for i in installations})
        instances = await self._by_id(
            "tool_instances", {i["tool_instance_id"] for i in installations if i.get("tool_instance_id")}
        )
        sites = await self._by_id("sites", {i["site_id"] for i in installations})
        assets = {}
        for kind, collection in ASSET_COLLECTIONS.items():
            ids = {i["asset_id"] for i in installations if i["asset_kind"] == kind.value}
            if ids:
                assets[kind] = await self._by_id(collection, ids)

        rows = []
        for doc in installations:
            kind = AssetKind(doc["asset_kind"])
            tool = tools.get(doc["drilling_tool_id"], {})
            instance = instances.get(doc.get("tool_instance_id"), {})
            site = sites.get(doc["site_id"], {})
            rows.append(UsageReportRow(
                installation_id=doc["_id"],
                tool_name=tool.get("name"),
                part_number=tool.get("part_number"),
                serial_number=instance.get("serial_number"),
                rpm_source=tool.get("rpm_source") or kind,
                machine=asset_display_name(assets.get(kind, {}).get(doc["asset_id"]), kind),
                machine_id=doc["asset_id"],
                site=site.get("site_name"),
                site_id=doc["site_id"],
                fitted_date=doc["fitted_date"],
                fitted_rpm=doc.get("fitted_rpm"),
                removed_date=doc.get("removed_date"),
                removed_rpm=doc.get("removed_rpm"),
                accumulated_meter=doc.get("current_accumulated_meter") or 0.0,
                status=doc["status"],
            ))
        logger.debug(f"Usage report built with {len(rows)} rows")
        return rows

    async def _by_id(self, collection: str, ids) -> Dict[str, dict]:
        docs = {}
        async for doc in self.db[collection].find({"_id": {"$in": list(ids)}}):
            docs[doc["_id"]] = doc
        return docs
