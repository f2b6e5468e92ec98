"""Panel identity cache — remembers names of panels that later go offline."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from panelhub.models.cached_panel import CachedPanel
from panelhub.services.discovery_progress import ResultStatus
from panelhub.services.panel_state import LivePanelState

if TYPE_CHECKING:
    from panelhub.services.discovery_engine import DiscoveryResult

logger = logging.getLogger(__name__)


class PanelCacheService:
    """Upserts panels found by discovery and serves their last-known identity."""

    async def record_discovery(
        self,
        db: AsyncSession,
        results: Iterable[DiscoveryResult],
        live_states: dict[str, LivePanelState] | None = None,
    ) -> int:
        """Store every ``panel`` result. Returns how many rows were touched."""
        panels = [r for r in results if r.status == ResultStatus.PANEL]
        if not panels:
            return 0

        live_states = live_states or {}
        now = datetime.now(timezone.utc)

        existing_rows = await db.execute(select(CachedPanel).where(CachedPanel.ip.in_([r.ip for r in panels])))
        existing = {row.ip: row for row in existing_rows.scalars().all()}

        for result in panels:
            live = live_states.get(result.ip)
            full_state = live.full_state if live else None
            row = existing.get(result.ip)
            if row is None:
                row = CachedPanel(ip=result.ip, first_seen=now, last_seen=now, discovery_count=1)
                db.add(row)
            else:
                row.last_seen = now
                row.discovery_count = (row.discovery_count or 0) + 1

            if result.name:
                row.name = result.name
            if full_state is not None:
                row.firmware_version = full_state.version or row.firmware_version
                row.device_id = full_state.device_id or row.device_id
            if result.settings is not None:
                if result.settings.logging is not None:
                    row.logging_enabled = result.settings.logging
                if result.settings.long_press_ms is not None:
                    row.long_press_ms = result.settings.long_press_ms

        await db.commit()
        logger.info("Panel cache updated with %d panels", len(panels))
        return len(panels)

    async def get_all(self, db: AsyncSession) -> list[CachedPanel]:
        result = await db.execute(select(CachedPanel).order_by(CachedPanel.ip))
        return list(result.scalars().all())

    async def get(self, db: AsyncSession, ip: str) -> CachedPanel | None:
        return await db.get(CachedPanel, ip)

    async def cached_names(self, db: AsyncSession, ips: Iterable[str]) -> dict[str, str]:
        """Names for the given IPs, for labelling panels that did not answer."""
        ips = list(ips)
        if not ips:
            return {}
        result = await db.execute(select(CachedPanel).where(CachedPanel.ip.in_(ips)))
        return {row.ip: row.name for row in result.scalars().all() if row.name}
