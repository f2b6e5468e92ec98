"""Smart action model and the mapping from stage actions to panel commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from panelhub.services.panel_messages import CommandType, CurtainAction, PanelCommand

logger = logging.getLogger(__name__)


class SwitchKind(str, Enum):
    LIGHT = "light"
    SHADE = "shade"
    VENETIAN = "venetian"


CURTAIN_KINDS = frozenset({SwitchKind.SHADE, SwitchKind.VENETIAN})


class SchedulingType(str, Enum):
    DELAY = "delay"
    WAIT_FOR_CURTAINS = "waitForCurtains"


@dataclass(frozen=True)
class SwitchRef:
    """Parsed ``"<ip>:<kind>:<index>"``. ``kind`` stays raw so bad kinds fail at dispatch."""

    ip: str
    kind: str
    index: int

    @property
    def is_curtain(self) -> bool:
        return self.kind in {k.value for k in CURTAIN_KINDS}


def parse_switch_id(switch_id: str) -> SwitchRef | None:
    parts = switch_id.split(":")
    if len(parts) != 3:
        return None
    ip, kind, index = parts
    try:
        return SwitchRef(ip=ip, kind=kind, index=int(index))
    except ValueError:
        return None


@dataclass
class StageAction:
    switch_id: str
    action: str


@dataclass
class ActionStage:
    actions: list[StageAction] = field(default_factory=list)


@dataclass
class ActionScheduling:
    type: SchedulingType
    delay_ms: int | None = None


@dataclass
class ActionStep:
    """Older single-action step format, still accepted from saved profiles."""

    switch_id: str
    action: str
    delay_ms: int = 0


@dataclass
class SmartAction:
    """A named sequence of stages; ``scheduling[i]`` sits between stage ``i`` and ``i + 1``."""

    name: str
    stages: list[ActionStage]
    scheduling: list[ActionScheduling] = field(default_factory=list)

    @classmethod
    def from_steps(cls, name: str, steps: list[ActionStep]) -> "SmartAction":
        """Each step becomes a one-action stage; its delay separates it from the next."""
        stages = [ActionStage(actions=[StageAction(s.switch_id, s.action)]) for s in steps]
        scheduling = [
            ActionScheduling(SchedulingType.DELAY, delay_ms=max(0, s.delay_ms)) for s in steps[:-1]
        ]
        return cls(name=name, stages=stages, scheduling=scheduling)

    def scheduling_after(self, stage_index: int) -> ActionScheduling | None:
        if stage_index >= len(self.stages) - 1 or stage_index >= len(self.scheduling):
            return None
        return self.scheduling[stage_index]


def build_command(action: StageAction) -> PanelCommand | None:
    """Map a stage action to a panel command, or ``None`` if the combination is invalid."""
    ref = parse_switch_id(action.switch_id)
    if ref is None:
        logger.warning("Malformed switch id: %s", action.switch_id)
        return None

    if ref.kind == SwitchKind.LIGHT.value:
        if action.action == "on":
            return PanelCommand(CommandType.SET_RELAY, index=ref.index, state=True)
        if action.action == "off":
            return PanelCommand(CommandType.SET_RELAY, index=ref.index, state=False)
        if action.action == "toggle":
            return PanelCommand(CommandType.TOGGLE_RELAY, index=ref.index)
        logger.warning("Invalid action for light: %s", action.action)
        return None

    if ref.is_curtain:
        try:
            curtain_action = CurtainAction(action.action)
        except ValueError:
            logger.warning("Invalid action for curtain: %s", action.action)
            return None
        return PanelCommand(CommandType.CURTAIN, index=ref.index, action=curtain_action)

    logger.warning("Unknown switch kind: %s", ref.kind)
    return None


def curtain_refs(actions: list[StageAction]) -> list[SwitchRef]:
    refs = []
    for action in actions:
        ref = parse_switch_id(action.switch_id)
        if ref is not None and ref.is_curtain:
            refs.append(ref)
    return refs
