"""Server-side smart action executor.

Executions run as background tasks, so an action keeps going after the
browser that started it goes away.  Each execution has its own record and
cancellation token; stopping is cooperative and is observed at every stage
and wait boundary.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from panelhub.config import settings
from panelhub.services.panel_messages import CommandType, CurtainAction, PanelCommand
from panelhub.services.panel_state import now_ms
from panelhub.services.smart_actions import (
    SchedulingType,
    SmartAction,
    StageAction,
    build_command,
    curtain_refs,
    parse_switch_id,
)

if TYPE_CHECKING:
    from panelhub.services.panel_registry import PanelRegistry

logger = logging.getLogger(__name__)

ProgressListener = Callable[[dict[str, Any]], None]


class ActionState(str, Enum):
    RUNNING = "running"
    WAITING = "waiting"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ActionState.STOPPED, ActionState.COMPLETED, ActionState.FAILED})


class WaitType(str, Enum):
    DELAY = "delay"
    CURTAINS = "curtains"


class CancellationToken:
    """One-shot stop signal that also makes sleeps return early."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class RunningAction:
    id: str
    owner_id: int
    action: SmartAction
    state: ActionState = ActionState.RUNNING
    current_stage: int = -1
    is_waiting: bool = False
    wait_type: WaitType | None = None
    remaining_delay_ms: int | None = None
    started_at: int = field(default_factory=now_ms)
    completed_at: int | None = None
    error: str | None = None
    current_stage_actions: list[StageAction] = field(default_factory=list)
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task | None = None
    expires_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def clear_wait(self) -> None:
        self.is_waiting = False
        self.wait_type = None
        self.remaining_delay_ms = None

    def to_progress(self) -> dict[str, Any]:
        progress: dict[str, Any] = {
            "executionId": self.id,
            "actionName": self.action.name,
            "state": self.state.value,
            "totalStages": len(self.action.stages),
            "currentStage": self.current_stage,
            "isWaiting": self.is_waiting,
            "startedAt": self.started_at,
        }
        if self.wait_type is not None:
            progress["waitType"] = self.wait_type.value
        if self.remaining_delay_ms is not None:
            progress["remainingDelayMs"] = self.remaining_delay_ms
        if self.completed_at is not None:
            progress["completedAt"] = self.completed_at
        if self.error is not None:
            progress["error"] = self.error
        return progress


class ActionExecutor:
    """Runs smart actions against the panel registry."""

    def __init__(self, registry: PanelRegistry):
        self._registry = registry
        self._actions: dict[str, RunningAction] = {}
        self._listeners: dict[str, list[ProgressListener]] = {}
        self._counter = itertools.count(1)

        self.delay_tick = settings.action_delay_tick_ms / 1000
        self.curtain_settle = settings.action_curtain_settle_ms / 1000
        self.curtain_poll = settings.action_curtain_poll_ms / 1000
        self.curtain_max_wait = settings.action_curtain_max_wait_ms / 1000
        self.stop_curtains_timeout = settings.action_stop_curtains_timeout_ms / 1000

    # --- Public API ----------------------------------------------------------

    def start_action(self, owner_id: int, action: SmartAction) -> str:
        """Start ``action`` in the background and return its execution id."""
        execution_id = f"action_{now_ms()}_{next(self._counter)}"
        record = RunningAction(id=execution_id, owner_id=owner_id, action=action)
        self._actions[execution_id] = record

        logger.info('Starting action "%s" (%s) for owner %s', action.name, execution_id, owner_id)
        self._broadcast(record)
        record.task = asyncio.create_task(self._run(record), name=execution_id)
        return execution_id

    async def stop_action(self, execution_id: str, stop_curtains: bool = True) -> bool:
        """Request a stop. False if the execution is unknown or already finished."""
        record = self._actions.get(execution_id)
        if record is None or record.is_terminal:
            return False

        logger.info('Stopping action "%s" (%s)', record.action.name, execution_id)
        record.token.cancel()

        if stop_curtains and record.current_stage_actions:
            await self._stop_curtains(record.current_stage_actions)

        record.state = ActionState.STOPPED
        record.clear_wait()
        record.completed_at = now_ms()
        record.expires_at = record.completed_at + settings.action_stopped_retention_seconds * 1000
        self._broadcast(record)
        return True

    def get_progress(self, execution_id: str) -> dict[str, Any] | None:
        record = self._actions.get(execution_id)
        if record is None or self._is_expired(record, now_ms()):
            return None
        return record.to_progress()

    def list_progress(self) -> list[dict[str, Any]]:
        now = now_ms()
        return [r.to_progress() for r in self._actions.values() if not self._is_expired(r, now)]

    def add_progress_listener(self, execution_id: str, listener: ProgressListener) -> None:
        """Subscribe to one execution; the current progress is sent immediately."""
        self._listeners.setdefault(execution_id, []).append(listener)
        progress = self.get_progress(execution_id)
        if progress is not None:
            self._deliver(listener, progress)

    def remove_progress_listener(self, execution_id: str, listener: ProgressListener) -> None:
        listeners = self._listeners.get(execution_id)
        if listeners and listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self._listeners[execution_id]

    def prune_expired(self, now: int | None = None) -> int:
        """Drop finished records whose retention window has passed."""
        now = now if now is not None else now_ms()
        expired = [eid for eid, r in self._actions.items() if self._is_expired(r, now)]
        for execution_id in expired:
            del self._actions[execution_id]
            self._listeners.pop(execution_id, None)
        if expired:
            logger.debug("Pruned %d finished action records", len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        tasks = []
        for record in self._actions.values():
            if record.task is not None and not record.task.done():
                record.token.cancel()
                record.task.cancel()
                tasks.append(record.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d running actions", len(tasks))

    # --- Control loop --------------------------------------------------------

    async def _run(self, record: RunningAction) -> None:
        action = record.action
        token = record.token
        try:
            for stage_index, stage in enumerate(action.stages):
                if token.cancelled:
                    logger.info("Action %s aborted before stage %d", record.id, stage_index)
                    break

                logger.info(
                    "Action %s: stage %d/%d (%s)",
                    record.id,
                    stage_index + 1,
                    len(action.stages),
                    ", ".join(f"{a.switch_id} -> {a.action}" for a in stage.actions),
                )
                record.current_stage = stage_index
                record.current_stage_actions = stage.actions
                record.state = ActionState.RUNNING
                record.clear_wait()
                self._broadcast(record)

                await asyncio.gather(*(self._dispatch(a) for a in stage.actions))

                if token.cancelled:
                    logger.info("Action %s aborted after stage %d", record.id, stage_index)
                    break

                scheduling = action.scheduling_after(stage_index)
                if scheduling is None:
                    continue
                if scheduling.type == SchedulingType.DELAY and scheduling.delay_ms and scheduling.delay_ms > 0:
                    await self._wait_delay(record, scheduling.delay_ms)
                elif scheduling.type == SchedulingType.WAIT_FOR_CURTAINS:
                    await self._wait_for_curtains(record, stage.actions)

            if not token.cancelled:
                logger.info('Action "%s" (%s) completed', action.name, record.id)
                record.state = ActionState.COMPLETED
                record.current_stage = len(action.stages)
                record.clear_wait()
                record.completed_at = now_ms()
                record.expires_at = record.completed_at + settings.action_completed_retention_seconds * 1000
                self._broadcast(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error('Action "%s" (%s) failed: %s', action.name, record.id, e)
            record.state = ActionState.FAILED
            record.error = str(e) or e.__class__.__name__
            record.clear_wait()
            record.completed_at = now_ms()
            record.expires_at = record.completed_at + settings.action_completed_retention_seconds * 1000
            self._broadcast(record)

    async def _dispatch(self, action: StageAction) -> bool:
        command = build_command(action)
        if command is None:
            return False
        ref = parse_switch_id(action.switch_id)
        ok = await self._registry.send_command(ref.ip, command)
        if not ok:
            logger.warning("Failed to send %s to %s", command.command.value, action.switch_id)
        return ok

    async def _wait_delay(self, record: RunningAction, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay_ms / 1000

        record.state = ActionState.WAITING
        record.is_waiting = True
        record.wait_type = WaitType.DELAY
        record.remaining_delay_ms = delay_ms
        self._broadcast(record)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            if await record.token.sleep(min(self.delay_tick, remaining)):
                return
            record.remaining_delay_ms = max(0, int((deadline - loop.time()) * 1000))
            self._broadcast(record)

        record.state = ActionState.RUNNING
        record.clear_wait()

    async def _wait_for_curtains(self, record: RunningAction, actions: list[StageAction]) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()

        record.state = ActionState.WAITING
        record.is_waiting = True
        record.wait_type = WaitType.CURTAINS
        record.remaining_delay_ms = None
        self._broadcast(record)

        # Give the panels a moment to report motion
        if await record.token.sleep(self.curtain_settle):
            return

        while True:
            if not self._curtains_moving(actions):
                logger.info("Action %s: curtains stopped", record.id)
                break
            if loop.time() - started >= self.curtain_max_wait:
                logger.warning("Action %s: curtains still moving after %.0fs, continuing", record.id, self.curtain_max_wait)
                break
            if await record.token.sleep(self.curtain_poll):
                return

        record.state = ActionState.RUNNING
        record.clear_wait()

    def _curtains_moving(self, actions: list[StageAction]) -> bool:
        for ref in curtain_refs(actions):
            state = self._registry.get_panel_state(ref.ip)
            if state is None or state.full_state is None:
                continue
            curtain = state.full_state.find_curtain(ref.index)
            if curtain is not None and curtain.is_moving:
                return True
        return False

    async def _stop_curtains(self, actions: list[StageAction]) -> None:
        refs = curtain_refs(actions)
        if not refs:
            return
        sends = [
            self._registry.send_command(
                ref.ip, PanelCommand(CommandType.CURTAIN, index=ref.index, action=CurtainAction.STOP)
            )
            for ref in refs
        ]
        try:
            await asyncio.wait_for(asyncio.gather(*sends), timeout=self.stop_curtains_timeout)
        except asyncio.TimeoutError:
            logger.warning("Curtain stop commands not confirmed within %.1fs", self.stop_curtains_timeout)

    # --- Progress fan-out ----------------------------------------------------

    @staticmethod
    def _is_expired(record: RunningAction, now: int) -> bool:
        return record.expires_at is not None and record.expires_at <= now

    def _broadcast(self, record: RunningAction) -> None:
        listeners = self._listeners.get(record.id)
        if not listeners:
            return
        progress = record.to_progress()
        for listener in list(listeners):
            self._deliver(listener, progress)

    @staticmethod
    def _deliver(listener: ProgressListener, progress: dict[str, Any]) -> None:
        try:
            listener(progress)
        except Exception as e:
            logger.error("Progress listener failed: %s", e)
