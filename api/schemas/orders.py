"""
Request bodies for panel order routes
"""
from typing import Optional

from pydantic import BaseModel, Field


class CreateOrderRequest(BaseModel):
    plan: str = Field(..., description="Plan id, e.g. 1gb .. 10gb or unlimited", examples=["1gb"])
    username: str = Field(..., description="Desired panel username", examples=["budi"])
    password: Optional[str] = Field(None, description="Panel password; defaults to <username>01 when empty")


class DeletePanelRequest(BaseModel):
    server_id: int = Field(..., description="Pterodactyl server id", examples=[42])
