"""Live panel control — state, commands, live-state stream, settings, labels, cache."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from panelhub.api.sse import SSE_HEADERS, sse_frame
from panelhub.database import get_db
from panelhub.schemas.panels import (
    CachedPanelOut,
    CommandResult,
    PanelCommandRequest,
    PanelCommandResponse,
    PanelRenameRequest,
    PanelRenameResponse,
    PanelResetResponse,
    PanelSettingsRequest,
    PanelSettingsResponse,
)
from panelhub.services import get_panel_cache, get_panel_http, get_panel_registry, get_session_id
from panelhub.services.panel_http import PanelHttpError
from panelhub.services.panel_messages import CommandType, CurtainAction, PanelCommand
from panelhub.services.panel_registry import RegistryEventType, RegistryMessage
from panelhub.services.panel_state import now_ms
from panelhub.utils.ip import is_valid_ip

logger = logging.getLogger(__name__)

router = APIRouter()

VALID_COMMANDS = [c.value for c in CommandType]


@router.get("/state")
async def panel_states():
    """Every panel the registry currently tracks."""
    registry = get_panel_registry()
    return {"panels": [s.to_dict() for s in registry.get_all_panel_states()]}


@router.post("/command", response_model=PanelCommandResponse)
async def send_command(body: PanelCommandRequest):
    """Send one command to a list of panels, or to every connected panel."""
    if body.command not in VALID_COMMANDS:
        raise HTTPException(400, f"Invalid command. Must be one of: {', '.join(VALID_COMMANDS)}")

    action = None
    if body.action is not None:
        try:
            action = CurtainAction(body.action)
        except ValueError:
            raise HTTPException(400, "action must be one of: open, close, stop")

    command = PanelCommand(CommandType(body.command), index=body.index, state=body.state, action=action)

    registry = get_panel_registry()
    if not body.ips or body.ips == "*":
        targets = registry.get_connected_panel_ips()
    else:
        targets = list(body.ips)

    if not targets:
        raise HTTPException(400, "No target panels available or connected")

    logger.info("Sending %s to %d panels", command.command.value, len(targets))
    delivered = await registry.send_command_to_many(targets, command)
    results = [CommandResult(ip=ip, success=ok) for ip, ok in delivered.items()]
    return PanelCommandResponse(
        results=results,
        total_sent=len(results),
        success_count=sum(1 for r in results if r.success),
    )


@router.get("/stream")
async def panel_stream(
    ips: str | None = Query(None),
    session: str | None = Query(None),
):
    """Live-state stream. The first frame is always a heartbeat."""
    if session != get_session_id():
        raise HTTPException(401, "Session expired — server restarted, please refresh")
    if not ips:
        raise HTTPException(400, "Missing 'ips' query parameter")

    targets = [ip.strip() for ip in ips.split(",") if is_valid_ip(ip.strip())]
    if not targets:
        raise HTTPException(400, "No valid IP addresses provided")

    registry = get_panel_registry()
    queue: asyncio.Queue[RegistryMessage] = asyncio.Queue()

    async def gen():
        registry.add_listener(queue.put_nowait)
        # Panels stay connected after the client leaves for fast reconnects
        registry.connect_panels(targets)
        try:
            yield sse_frame(RegistryMessage(RegistryEventType.HEARTBEAT, "", now_ms()).to_dict())
            while True:
                message = await queue.get()
                yield sse_frame(message.to_dict())
        finally:
            registry.remove_listener(queue.put_nowait)
            logger.debug("Live-state client disconnected")

    return StreamingResponse(gen(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/settings", response_model=PanelSettingsResponse)
async def apply_settings(body: PanelSettingsRequest):
    """Change logging or long-press time through the panel's settings form."""
    panel_http = get_panel_http()
    try:
        result = await panel_http.apply_settings(body.ip, body.operation, body.long_press_ms)
    except TimeoutError:
        raise HTTPException(504, "Request timed out")
    except PanelHttpError as e:
        raise HTTPException(502, str(e))

    return PanelSettingsResponse(ip=body.ip, operation=body.operation, settings=result.to_dict())


@router.post("/rename", response_model=PanelRenameResponse)
async def rename_label(body: PanelRenameRequest):
    """Proxy a label change to the panel's device-label API."""
    if not is_valid_ip(body.ip):
        raise HTTPException(400, "Missing or invalid 'ip' parameter")

    panel_http = get_panel_http()
    try:
        reply = await panel_http.rename_label(body.ip, body.type, body.index, body.name)
    except TimeoutError:
        raise HTTPException(504, "Request timed out")
    except PanelHttpError as e:
        raise HTTPException(502, str(e))

    return PanelRenameResponse(ip=body.ip, type=body.type, index=body.index, name=body.name, panel_response=reply)


@router.post("/reset", response_model=PanelResetResponse)
async def reset_registry():
    """Disconnect every panel and forget all live state."""
    registry = get_panel_registry()
    previous = await registry.reset()
    return PanelResetResponse(message=f"Cleared {previous} panel connections")


@router.get("/cache", response_model=list[CachedPanelOut])
async def cached_panels(db: AsyncSession = Depends(get_db)):
    """Last-known identity of every panel discovery has seen."""
    cache = get_panel_cache()
    return await cache.get_all(db)
