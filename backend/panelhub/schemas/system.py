"""System status schemas."""

from pydantic import BaseModel

from panelhub.schemas.common import CamelModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    service: str = "panelhub"


class SessionResponse(CamelModel):
    """Server session — changes on every restart."""
    session_id: str
