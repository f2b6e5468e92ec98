"""Panel discovery routes — blocking sweep, SSE sweep, progress polling."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from panelhub.api.sse import SSE_HEADERS, sse_frame
from panelhub.database import async_session, get_db
from panelhub.schemas.discovery import DiscoveryRequest, DiscoveryResponse, DiscoverySummary
from panelhub.services import get_discovery_engine, get_panel_cache, get_panel_registry, get_progress_tracker
from panelhub.services.discovery_engine import (
    DiscoveryEvent,
    DiscoveryEventType,
    DiscoveryResult,
    DiscoveryStats,
    DiscoveryStatus,
    InvalidRangeError,
    validate_discovery_range,
)
from panelhub.services.panel_state import now_ms

logger = logging.getLogger(__name__)

router = APIRouter()

# Sweeps outlive the stream that started them
_sweeps: set[asyncio.Task] = set()


async def _remember_panels(db: AsyncSession, results: list[DiscoveryResult]) -> dict[str, str]:
    """Store found panels in the cache and return cached names for silent IPs."""
    cache = get_panel_cache()
    live = {s.ip: s for s in get_panel_registry().get_all_panel_states()}
    try:
        await cache.record_discovery(db, results, live)
        silent = [r.ip for r in results if r.status == DiscoveryStatus.NO_RESPONSE]
        return await cache.cached_names(db, silent)
    except SQLAlchemyError as e:
        logger.error("Panel cache update failed: %s", e)
        return {}


def _result_dict(result: DiscoveryResult, cached_names: dict[str, str]) -> dict:
    data = result.to_dict()
    if result.ip in cached_names:
        data["cachedName"] = cached_names[result.ip]
    return data


@router.post("", response_model=DiscoveryResponse)
async def discover(body: DiscoveryRequest, db: AsyncSession = Depends(get_db)):
    """Sweep a /24 range and return every classified address."""
    engine = get_discovery_engine()
    try:
        results = await engine.discover(body.base_ip, body.start, body.end, thorough=body.thorough)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    ordered = list(results.values())
    cached_names = await _remember_panels(db, ordered)

    def count(status: DiscoveryStatus) -> int:
        return sum(1 for r in ordered if r.status == status)

    return DiscoveryResponse(
        summary=DiscoverySummary(
            base_ip=body.base_ip.strip(),
            start=body.start,
            end=body.end,
            total_checked=len(ordered),
            panels_found=count(DiscoveryStatus.PANEL),
            not_panels=count(DiscoveryStatus.NOT_PANEL),
            no_response=count(DiscoveryStatus.NO_RESPONSE) + count(DiscoveryStatus.PENDING),
            errors=count(DiscoveryStatus.ERROR),
        ),
        results=[_result_dict(r, cached_names) for r in ordered],
    )


@router.get("/stream")
async def discover_stream(
    base_ip: str = Query(..., alias="baseIp"),
    start: int = Query(1),
    end: int = Query(254),
    thorough: bool = Query(False),
):
    """Same sweep as ``POST /discover``, pushed as server-sent events."""
    try:
        validate_discovery_range(base_ip, start, end)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine = get_discovery_engine()
    queue: asyncio.Queue[DiscoveryEvent | None] = asyncio.Queue()

    async def run_sweep() -> None:
        try:
            results = await engine.discover(base_ip, start, end, on_event=queue.put_nowait, thorough=thorough)
        except Exception as e:
            logger.error("Discovery sweep of %s.%d-%d failed: %s", base_ip, start, end, e, exc_info=True)
            queue.put_nowait(
                DiscoveryEvent(
                    type=DiscoveryEventType.COMPLETE,
                    stats=DiscoveryStats(total_ips=0, panels_found=0, non_panels=0, no_response=0, errors=1),
                )
            )
            queue.put_nowait(None)
            return
        try:
            async with async_session() as db:
                await _remember_panels(db, list(results.values()))
        except Exception as e:
            logger.error("Storing sweep results failed: %s", e)
        finally:
            queue.put_nowait(None)

    async def gen():
        task = asyncio.create_task(run_sweep())
        _sweeps.add(task)
        task.add_done_callback(_sweeps.discard)
        while True:
            event = await queue.get()
            if event is None:
                break
            yield sse_frame(event.to_dict())
            if event.type == DiscoveryEventType.COMPLETE:
                break

    return StreamingResponse(gen(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/progress")
async def discover_progress():
    """Snapshot for clients that are not attached to the event stream."""
    snapshot = get_progress_tracker().snapshot()
    start_time = snapshot["startTime"]
    snapshot["elapsed"] = now_ms() - start_time if start_time else 0
    return snapshot
