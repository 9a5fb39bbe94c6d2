"""
API error responses and mapping from storefront errors
"""
from fastapi import HTTPException

from database import DatabaseError
from services.errors import (
    PanelShopError, ValidationError, GatewayError, NotFoundError, ProvisioningError,
)


class APIError(HTTPException):
    """HTTPException with a machine-readable code"""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(status_code=status_code, detail={"code": code, "message": message})


class BadRequestError(APIError):
    def __init__(self, message: str):
        super().__init__(400, "bad_request", message)


class UnauthorizedError(APIError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, "unauthorized", message)


class ForbiddenError(APIError):
    def __init__(self, message: str = "Not allowed"):
        super().__init__(403, "forbidden", message)


class ResourceNotFoundError(APIError):
    def __init__(self, message: str):
        super().__init__(404, "not_found", message)


class BadGatewayError(APIError):
    def __init__(self, message: str):
        super().__init__(502, "bad_gateway", message)


class ServiceUnavailableError(APIError):
    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(503, "service_unavailable", message)


class InternalServerError(APIError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(500, "internal_error", message)


def http_error_for(exc: Exception) -> APIError:
    """Translate a storefront or persistence error into its HTTP response"""
    if isinstance(exc, ValidationError):
        return BadRequestError(str(exc))
    if isinstance(exc, NotFoundError):
        return ResourceNotFoundError(str(exc))
    if isinstance(exc, (GatewayError, ProvisioningError)):
        return BadGatewayError(str(exc))
    if isinstance(exc, DatabaseError):
        return ServiceUnavailableError("Database temporarily unavailable")
    if isinstance(exc, PanelShopError):
        return InternalServerError(str(exc))
    return InternalServerError()
