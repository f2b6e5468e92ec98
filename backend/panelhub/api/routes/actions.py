"""Smart action routes — start, list, inspect, stop, stream progress."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from panelhub.api.sse import SSE_HEADERS, sse_frame
from panelhub.schemas.actions import StartActionRequest, StartActionResponse, StopActionResponse
from panelhub.services import get_action_executor
from panelhub.services.action_executor import TERMINAL_STATES, ActionState
from panelhub.services.panel_state import now_ms

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_HEARTBEAT_SECONDS = 15


@router.post("/run", response_model=StartActionResponse, response_model_exclude_none=True)
async def run_action(body: StartActionRequest):
    """Start an action on the server; it keeps running if the client leaves."""
    action = body.action.to_action()
    if not action.stages:
        raise HTTPException(400, "Action must have at least one stage")

    executor = get_action_executor()
    execution_id = executor.start_action(body.owner_id, action)
    return StartActionResponse(success=True, execution_id=execution_id)


@router.get("/run")
async def list_actions():
    """Every execution still inside its retention window."""
    actions = get_action_executor().list_progress()
    return {"actions": actions, "count": len(actions)}


@router.get("/{execution_id}")
async def action_progress(execution_id: str):
    progress = get_action_executor().get_progress(execution_id)
    if progress is None:
        raise HTTPException(404, "Action not found")
    return progress


@router.delete("/{execution_id}", response_model=StopActionResponse, response_model_exclude_none=True)
async def stop_action(execution_id: str, stop_curtains: bool = Query(True, alias="stopCurtains")):
    """Stop a running action, optionally halting curtains it set moving."""
    logger.info("Stopping action %s (stopCurtains=%s)", execution_id, stop_curtains)
    stopped = await get_action_executor().stop_action(execution_id, stop_curtains)
    if not stopped:
        raise HTTPException(404, "Action not found or already completed")
    return StopActionResponse(success=True, curtains_stopped=stop_curtains)


@router.get("/{execution_id}/stream")
async def action_stream(execution_id: str):
    """Progress frames as ``event: progress``; a final ``event: complete`` closes the stream."""
    executor = get_action_executor()
    if executor.get_progress(execution_id) is None:
        raise HTTPException(404, "Action not found")

    queue: asyncio.Queue[dict] = asyncio.Queue()

    async def gen():
        executor.add_progress_listener(execution_id, queue.put_nowait)
        try:
            while True:
                try:
                    progress = await asyncio.wait_for(queue.get(), timeout=STREAM_HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield sse_frame({"timestamp": now_ms()}, event="heartbeat")
                    continue
                yield sse_frame(progress, event="progress")
                if ActionState(progress["state"]) in TERMINAL_STATES:
                    yield sse_frame(progress, event="complete")
                    break
        finally:
            executor.remove_progress_listener(execution_id, queue.put_nowait)

    return StreamingResponse(gen(), media_type="text/event-stream", headers=SSE_HEADERS)
