"""APScheduler-based housekeeping jobs for the registry and executor."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from panelhub.config import settings

if TYPE_CHECKING:
    from panelhub.services.action_executor import ActionExecutor
    from panelhub.services.panel_registry import PanelRegistry

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Periodic heartbeat for live-state listeners and action record pruning."""

    def __init__(
        self,
        registry: PanelRegistry,
        executor: ActionExecutor,
    ):
        self._registry = registry
        self._executor = executor
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    def start(self) -> None:
        """Register and start all maintenance jobs."""
        heartbeat = settings.registry_heartbeat_seconds
        prune = settings.action_prune_interval_seconds

        # Job 1: keep push streams alive
        self._scheduler.add_job(
            self._heartbeat,
            "interval",
            seconds=heartbeat,
            id="registry_heartbeat",
            name="Broadcast registry heartbeat",
        )

        # Job 2: forget finished executions
        self._scheduler.add_job(
            self._prune_actions,
            "interval",
            seconds=prune,
            id="prune_actions",
            name="Prune expired action records",
        )

        self._scheduler.start()
        logger.info(
            "Maintenance scheduler started — heartbeat every %ds, prune every %ds",
            heartbeat,
            prune,
        )

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Maintenance scheduler stopped")

    async def _heartbeat(self) -> None:
        try:
            self._registry.broadcast_heartbeat()
        except Exception as e:
            logger.error("Heartbeat job failed: %s", e)

    async def _prune_actions(self) -> None:
        try:
            self._executor.prune_expired()
        except Exception as e:
            logger.error("Prune job failed: %s", e)
