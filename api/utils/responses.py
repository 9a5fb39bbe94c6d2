"""
Standard response envelope
"""
import time
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    # Whole-rupiah Decimals encode as JSON integers
    response = {"success": True, "data": jsonable_encoder(data), "timestamp": int(time.time())}
    if message:
        response["message"] = message
    return response
