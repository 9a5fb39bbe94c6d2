"""
Admin Routes - order and panel administration
"""
import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_panel_orchestrator
from api.middleware.authentication import require_admin
from api.schemas.orders import DeletePanelRequest
from api.utils.responses import success_response
from services.panel_order_orchestrator import PanelOrderOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


@router.get("/orders", response_model=dict)
async def all_orders(
    admin: dict = Depends(require_admin),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    orders = await orchestrator.list_orders()
    return success_response({"orders": [order.to_public_dict() for order in orders]})


@router.get("/panels", response_model=dict)
async def all_panels(
    admin: dict = Depends(require_admin),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    accounts = await orchestrator.list_accounts()
    return success_response({"panels": [account.to_dict() for account in accounts]})


@router.post("/delete-panel", response_model=dict)
async def delete_panel(
    request: DeletePanelRequest,
    admin: dict = Depends(require_admin),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    """Delete a panel server; 404 if the panel no longer has it (the stale record is removed)"""
    account = await orchestrator.delete_account(request.server_id, actor=admin["actor"])
    return success_response(
        {"server_id": request.server_id, "username": account.username},
        message="Panel deleted",
    )


@router.post("/orders/{order_id}/provision", response_model=dict)
async def provision_order(
    order_id: str,
    admin: dict = Depends(require_admin),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    """Create the panel for a paid order whose automatic provisioning failed"""
    logger.info(f"🔧 ADMIN: {admin['actor']} requested manual provisioning for {order_id}")
    result = await orchestrator.provision_completed_order(order_id)
    return success_response(result.to_dict())
