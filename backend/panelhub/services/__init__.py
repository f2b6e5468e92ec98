"""Business logic services — singleton registry."""

from __future__ import annotations

import logging
import random
import string
from typing import TYPE_CHECKING

from panelhub.services.panel_state import now_ms

if TYPE_CHECKING:
    from panelhub.services.action_executor import ActionExecutor
    from panelhub.services.discovery_engine import DiscoveryEngine
    from panelhub.services.discovery_progress import DiscoveryProgressTracker
    from panelhub.services.panel_cache import PanelCacheService
    from panelhub.services.panel_http import PanelHttpClient
    from panelhub.services.panel_registry import PanelRegistry
    from panelhub.services.scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)

_progress_tracker: DiscoveryProgressTracker | None = None
_discovery_engine: DiscoveryEngine | None = None
_panel_registry: PanelRegistry | None = None
_action_executor: ActionExecutor | None = None
_panel_cache: PanelCacheService | None = None
_panel_http: PanelHttpClient | None = None
_scheduler: MaintenanceScheduler | None = None
_session_id: str | None = None

_BASE36 = string.digits + string.ascii_lowercase


def generate_session_id() -> str:
    """``<epoch-ms>-<7 base36 chars>``, unique per process lifetime."""
    suffix = "".join(random.choices(_BASE36, k=7))
    return f"{now_ms()}-{suffix}"


async def init_services() -> None:
    """Create and wire up all service singletons."""
    global _progress_tracker, _discovery_engine, _panel_registry, _action_executor
    global _panel_cache, _panel_http, _scheduler, _session_id

    from panelhub.services.action_executor import ActionExecutor
    from panelhub.services.discovery_engine import DiscoveryEngine
    from panelhub.services.discovery_progress import DiscoveryProgressTracker
    from panelhub.services.panel_cache import PanelCacheService
    from panelhub.services.panel_http import PanelHttpClient
    from panelhub.services.panel_registry import PanelRegistry
    from panelhub.services.scheduler import MaintenanceScheduler

    _session_id = generate_session_id()

    # Discovery
    _progress_tracker = DiscoveryProgressTracker()
    _panel_http = PanelHttpClient()
    _discovery_engine = DiscoveryEngine(_progress_tracker, panel_http=_panel_http)
    _panel_cache = PanelCacheService()

    # Live control
    _panel_registry = PanelRegistry()
    _action_executor = ActionExecutor(_panel_registry)

    _scheduler = MaintenanceScheduler(_panel_registry, _action_executor)
    _scheduler.start()
    logger.info("Services initialized (session %s)", _session_id)


async def shutdown_services() -> None:
    """Stop scheduler, running actions and panel links."""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
    if _action_executor:
        await _action_executor.shutdown()
    if _panel_registry:
        await _panel_registry.disconnect_all()
    logger.info("Services shut down")


def get_session_id() -> str:
    if _session_id is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _session_id


def get_progress_tracker() -> DiscoveryProgressTracker:
    if _progress_tracker is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _progress_tracker


def get_discovery_engine() -> DiscoveryEngine:
    if _discovery_engine is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _discovery_engine


def get_panel_registry() -> PanelRegistry:
    if _panel_registry is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _panel_registry


def get_action_executor() -> ActionExecutor:
    if _action_executor is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _action_executor


def get_panel_cache() -> PanelCacheService:
    if _panel_cache is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _panel_cache


def get_panel_http() -> PanelHttpClient:
    if _panel_http is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _panel_http
