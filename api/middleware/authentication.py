"""
Request identity for storefront routes

Buyer identity is set by the upstream session layer in X-User-Id / X-Username.
Admin routes additionally require X-Admin-Key to match ADMIN_API_KEY.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, Request

from api.utils.errors import UnauthorizedError, ForbiddenError
from config import get_config

logger = logging.getLogger(__name__)


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_username: Optional[str] = Header(None),
) -> dict:
    """Identity of the logged-in buyer"""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Login required")
    return {"user_id": x_user_id.strip(), "username": (x_username or "").strip() or None}


async def require_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(None),
    x_username: Optional[str] = Header(None),
) -> dict:
    """Admin identity; the key comparison is constant-time"""
    admin_key = get_config().security.admin_api_key
    if not admin_key:
        logger.warning(f"🚫 Admin request to {request.url.path} rejected - ADMIN_API_KEY not configured")
        raise ForbiddenError("Admin API is disabled")

    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), admin_key.encode()):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"🚫 Invalid admin key for {request.url.path} from {client}")
        raise ForbiddenError("Invalid admin key")

    return {"actor": (x_username or "").strip() or "admin"}
