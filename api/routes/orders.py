"""
Panel Order Routes - buyer-facing storefront endpoints
"""
import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_panel_orchestrator
from api.middleware.authentication import get_current_user
from api.schemas.orders import CreateOrderRequest
from api.utils.errors import ForbiddenError
from api.utils.responses import success_response
from pricing_utils import plan_to_dict
from services.panel_order_orchestrator import PanelOrderOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/plans", response_model=dict)
async def list_plans(orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator)):
    """Available panel plans with prices and resource limits"""
    plans = [plan_to_dict(plan) for plan in orchestrator.catalog.list_plans()]
    return success_response({"plans": plans})


@router.post("/create-order", response_model=dict)
async def create_order(
    request: CreateOrderRequest,
    user: dict = Depends(get_current_user),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    """
    Create a panel order and its QRIS payment.

    The buyer pays the returned `payment_number` before `expired_time`
    (Asia/Jakarta) and then polls `/check-payment/{order_id}`.
    """
    created = await orchestrator.create_order(
        user_id=user["user_id"],
        plan=request.plan,
        panel_username=request.username,
        panel_password=request.password,
        username=user["username"],
    )
    return success_response(created.to_dict())


@router.get("/check-payment/{order_id}", response_model=dict)
async def check_payment(
    order_id: str,
    user: dict = Depends(get_current_user),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    """Poll an order: `pending`, `completed` (with panel), `expired` or `error`"""
    order = await orchestrator.get_order(order_id)
    if order.user_id != user["user_id"]:
        logger.warning(f"🚫 User {user['user_id']} polled order {order_id} owned by someone else")
        raise ForbiddenError("This order belongs to another user")
    result = await orchestrator.check_status(order_id)
    return result.to_dict()


@router.get("/orders", response_model=dict)
async def my_orders(
    user: dict = Depends(get_current_user),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    orders = await orchestrator.list_orders(user_id=user["user_id"])
    return success_response({"orders": [order.to_public_dict() for order in orders]})


@router.get("/panels", response_model=dict)
async def my_panels(
    user: dict = Depends(get_current_user),
    orchestrator: PanelOrderOrchestrator = Depends(get_panel_orchestrator),
):
    accounts = await orchestrator.list_accounts(owner_id=user["user_id"])
    return success_response({"panels": [account.to_dict() for account in accounts]})
