"""API route registration."""

from fastapi import APIRouter

from panelhub.api.routes import actions, discovery, health, panels

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(discovery.router, prefix="/discover", tags=["discovery"])
api_router.include_router(panels.router, prefix="/panels", tags=["panels"])
api_router.include_router(actions.router, prefix="/actions", tags=["actions"])
