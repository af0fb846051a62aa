"""
Drilling Tool Fitting Routes for DrillTrack

Backs the fitting screen: what can be fitted to an asset, what is fitted
now, and the fit / remove / undo commands.

Every command holds the asset-day lock of the day it acts on.
"""

from fastapi import APIRouter, Depends, status
import logging

from models.drilling_tools import AssetKind
from models.installation import FitRequest, RemoveRequest, UndoFitRequest
from services.engine_deps import get_fitting_service, get_ledger
from services.installation_ledger import InstallationLedger
from services.tool_fitting import ToolFittingService

router = APIRouter(prefix="/api/drilling-tools", tags=["drilling-tools"])
logger = logging.getLogger(__name__)


@router.get("/assets/{asset_kind}/{asset_id}/available")
async def list_available_components(
    asset_kind: AssetKind,
    asset_id: str,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    """Serialized tools in stock at the asset's site plus untracked site stock"""
    available = await fitting.list_available_components_for_asset(asset_id, asset_kind)
    return [c.model_dump() for c in available]


@router.get("/assets/{asset_kind}/{asset_id}/installations")
async def list_active_installations(
    asset_kind: AssetKind,
    asset_id: str,
    ledger: InstallationLedger = Depends(get_ledger),
):
    installations = await ledger.list_active_for_asset(asset_id, asset_kind)
    return [i.model_dump() for i in installations]


@router.get("/instances/{instance_id}/active-installation")
async def get_active_installation_for_instance(
    instance_id: str,
    ledger: InstallationLedger = Depends(get_ledger),
):
    installation = await ledger.get_active_for_instance(instance_id)
    return installation.model_dump() if installation else None


@router.post("/installations", status_code=status.HTTP_201_CREATED)
async def fit_tool(
    request: FitRequest,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    logger.info(f"Fit requested on {request.asset_kind.value} {request.asset_id} ({request.component_ref.kind})")
    installation = await fitting.fit_tool(request)
    return installation.model_dump()


@router.get("/installations/{installation_id}")
async def get_installation(
    installation_id: str,
    ledger: InstallationLedger = Depends(get_ledger),
):
    installation = await ledger.get(installation_id)
    return installation.model_dump()


@router.post("/installations/{installation_id}/remove")
async def remove_tool(
    installation_id: str,
    request: RemoveRequest,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    installation = await fitting.remove_tool(installation_id, request)
    return installation.model_dump()


@router.post("/installations/{installation_id}/undo")
async def undo_pending_fit(
    installation_id: str,
    request: UndoFitRequest,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    """Hard-delete a fit that has not been credited with any usage yet"""
    installation = await fitting.undo_pending_fit(installation_id, request.transaction_id)
    return {"message": "Fit undone", "installation_id": installation.id}


@router.get("/installations/{installation_id}/logs")
async def list_usage_logs(
    installation_id: str,
    ledger: InstallationLedger = Depends(get_ledger),
):
    await ledger.get(installation_id)
    entries = await ledger.list_logs(installation_id)
    return [e.model_dump() for e in entries]


@router.get("/installations/{installation_id}/attributions")
async def list_usage_attributions(
    installation_id: str,
    ledger: InstallationLedger = Depends(get_ledger),
):
    """Per-day contributions currently counted in the installation's totals"""
    await ledger.get(installation_id)
    attributions = await ledger.list_attributions(installation_id)
    return [a.model_dump() for a in attributions]


@router.get("/tools/{drilling_tool_id}")
async def get_drilling_tool(
    drilling_tool_id: str,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    """Catalog entry with lifetime usage totals"""
    tool = await fitting.get_tool(drilling_tool_id)
    return tool.model_dump()


@router.get("/instances/{instance_id}")
async def get_tool_instance(
    instance_id: str,
    fitting: ToolFittingService = Depends(get_fitting_service),
):
    instance = await fitting.get_instance(instance_id)
    return instance.model_dump()
