"""Health check and server session."""

from fastapi import APIRouter

from panelhub import __version__
from panelhub.schemas.system import HealthResponse, SessionResponse
from panelhub.services import get_session_id

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Lightweight connectivity check."""
    return HealthResponse(version=__version__)


@router.get("/ping")
async def ping():
    """Ultra-lightweight ping."""
    return {"status": "ok"}


@router.get("/session", response_model=SessionResponse)
async def server_session():
    """Per-process session id; a change tells clients the server restarted."""
    return SessionResponse(session_id=get_session_id())
