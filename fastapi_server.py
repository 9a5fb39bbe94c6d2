#!/usr/bin/env python3
"""
FastAPI server - HTTP entry point for the Pterodactyl panel storefront
Wires configuration, persistence, payment, provisioning and notifications
together and runs the hourly order expiry sweep
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_config
from database import DatabaseError, init_database, close_connection_pool
from group_notifications import build_notifier_from_config
from pricing_utils import get_plan_catalog
from services.errors import PanelShopError
from services.order_store import (
    InMemoryOrderStore, InMemoryAccountStore, PostgresOrderStore, PostgresAccountStore,
)
from services.pakasir import PakasirService
from services.panel_order_orchestrator import PanelOrderOrchestrator
from services.pterodactyl import PterodactylService
from utils.credential_cipher import CredentialCipher

# Configure logging early to capture all startup logs including lifespan
import json as _json
from datetime import datetime as _dt, timezone as _tz


class _JsonLogFormatter(logging.Formatter):
    """Single structured JSON log format for production"""
    def format(self, record):
        log_data = {
            'timestamp': _dt.fromtimestamp(record.created, _tz.utc).isoformat(),
            'level': record.levelname,
            'component': record.name,
            'message': record.getMessage(),
        }
        for key in ('user_id', 'order_id', 'context'):
            value = getattr(record, key, None)
            if value:
                log_data[key] = value
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return _json.dumps(log_data, default=str)


_handler = logging.StreamHandler()
_handler.setFormatter(_JsonLogFormatter())
logging.root.handlers = [_handler]
logging.root.setLevel(logging.INFO)

# SECURITY: Pakasir status checks carry the API key in the query string
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

_service_status = {
    'database': False,
    'scheduler': False,
    'notifications': False,
}


async def run_expiry_sweep(orchestrator: PanelOrderOrchestrator):
    """Scheduled job: expire pending orders past their payment window"""
    try:
        await orchestrator.expire_stale()
    except Exception as e:
        logger.error(f"❌ EXPIRY SWEEP: failed: {e}")


def build_orchestrator(config, use_database: bool) -> PanelOrderOrchestrator:
    if use_database:
        cipher = CredentialCipher(config.database.encryption_key)
        order_store = PostgresOrderStore(cipher)
        account_store = PostgresAccountStore(cipher)
    else:
        order_store = InMemoryOrderStore()
        account_store = InMemoryAccountStore()

    catalog = get_plan_catalog()
    return PanelOrderOrchestrator(
        order_store=order_store,
        account_store=account_store,
        gateway=PakasirService(config.payment),
        provisioner=PterodactylService(config.panel, catalog=catalog),
        notifier=build_notifier_from_config(config.telegram),
        catalog=catalog,
        payment_window_minutes=config.orders.payment_window_minutes,
        provisioning_claim_minutes=config.orders.provisioning_claim_minutes,
        display_timezone=config.orders.display_timezone,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start persistence, notifier and scheduler; tear them down on shutdown"""
    global _service_status

    logger.info("=" * 80)
    logger.info("🚀 STARTING PTEROSHOP API")
    logger.info("=" * 80)

    _service_status = {key: False for key in _service_status}
    config = get_config()

    # Validate configuration - don't crash on failure, just warn
    validation = config.validate()
    if not validation['valid']:
        logger.error("❌ Configuration validation found issues:")
        for issue in validation['issues']:
            logger.error(f"  • {issue}")
        logger.warning("⚠️ Starting with incomplete configuration - some features may not work")

    use_database = bool(config.database.url)
    if use_database:
        # An unreachable database at boot is fatal
        await init_database()
        _service_status['database'] = True
    else:
        logger.warning("⚠️ DATABASE_URL not set - orders are kept in memory and lost on restart")

    orchestrator = build_orchestrator(config, use_database)
    app.state.orchestrator = orchestrator

    notifier = orchestrator.notifier
    await notifier.start()
    _service_status['notifications'] = notifier.enabled

    scheduler: Optional[AsyncIOScheduler] = None
    try:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            run_expiry_sweep,
            'cron',
            minute=config.orders.expiry_cron_minute,
            args=[orchestrator],
            id='expire_pending_orders',
            name='Hourly Pending Order Expiry',
            replace_existing=True,
        )
        scheduler.start()
        _service_status['scheduler'] = True
        logger.info(f"✅ Scheduled: hourly order expiry sweep at minute {config.orders.expiry_cron_minute}")
    except Exception as e:
        logger.error(f"❌ Failed to start scheduler: {e}")
        logger.error("   • Expired orders will only be marked when polled")

    logger.info("✅ PteroShop API ready")

    try:
        yield
    finally:
        logger.info("🛑 Shutting down PteroShop API")
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        await notifier.close()
        if use_database:
            close_connection_pool()


app = FastAPI(
    title="PteroShop API",
    description="Pterodactyl panel storefront with Pakasir QRIS payments",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint - ALWAYS RETURNS 200
@app.get("/health", include_in_schema=False)
@app.get("/api/health", include_in_schema=False)
async def health_check():
    """Health check for monitoring; reports degraded services without failing"""
    healthy = sum(1 for status in _service_status.values() if status)
    return {
        "status": "healthy" if healthy == len(_service_status) else "degraded",
        "http_server": "operational",
        "timestamp": int(time.time()),
        "services": {
            "database": "connected" if _service_status['database'] else "in-memory",
            "scheduler": "running" if _service_status['scheduler'] else "stopped",
            "notifications": "enabled" if _service_status['notifications'] else "log-only",
        },
    }


# Mount REST API routes
from api.routes import orders, admin  # noqa: E402
from api.utils.errors import http_error_for  # noqa: E402

app.include_router(orders.router, prefix="/api", tags=["Orders"])
app.include_router(admin.router, prefix="/api", tags=["Admin"])


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "timestamp": int(time.time())}
    )


@app.exception_handler(PanelShopError)
@app.exception_handler(DatabaseError)
async def storefront_exception_handler(request: Request, exc: Exception):
    """Map storefront errors to their HTTP status"""
    error = http_error_for(exc)
    if error.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return await http_exception_handler(request, error)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(f"❌ Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "timestamp": int(time.time())}
    )


# Development server
if __name__ == "__main__":
    uvicorn.run(
        "fastapi_server:app",
        host="0.0.0.0",
        port=5000,
        reload=False,
        log_level="info"
    )
