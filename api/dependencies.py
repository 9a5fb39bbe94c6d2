"""
Shared route dependencies
"""
from fastapi import Request

from api.utils.errors import ServiceUnavailableError
from services.panel_order_orchestrator import PanelOrderOrchestrator


def get_panel_orchestrator(request: Request) -> PanelOrderOrchestrator:
    """Orchestrator built during application startup"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ServiceUnavailableError("Order service is starting up")
    return orchestrator
