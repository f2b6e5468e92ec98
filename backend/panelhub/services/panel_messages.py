"""Panel websocket protocol — inbound event variants and outbound commands.

Every inbound frame is a JSON object tagged by its ``event`` field.  Frames are
parsed exactly once, at the connection boundary, into one of the event classes
below.  Tags this module does not know are preserved as :class:`UnknownEvent`
so newer firmware keeps flowing through to subscribers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from panelhub.services.panel_state import (
    ContactState,
    CurtainState,
    PanelFullState,
    RelayState,
    parse_contact_state,
    parse_curtain_state,
)

logger = logging.getLogger(__name__)


@dataclass
class FullStateEvent:
    tag: ClassVar[str] = "full_state"
    state: PanelFullState


@dataclass
class RelayUpdateEvent:
    """One or more relay changes.

    Firmware sends either ``{"relay": {...}}`` or a ``{"device": {"0": true}}``
    index map; both collapse into a list of updates.
    """

    tag: ClassVar[str] = "relay_update"
    updates: list[RelayState]


@dataclass
class CurtainUpdateEvent:
    tag: ClassVar[str] = "curtain_update"
    curtain: CurtainState


@dataclass
class ContactUpdateEvent:
    tag: ClassVar[str] = "contact_update"
    contact: ContactState


@dataclass
class BacklightUpdateEvent:
    tag: ClassVar[str] = "backlight_update"
    state: bool


@dataclass
class SceneStatusEvent:
    tag: ClassVar[str] = "scene_status"
    name: str | None
    status: str | None


@dataclass
class NetworkStatusEvent:
    tag: ClassVar[str] = "network_status"
    connected: bool | None
    ip: str | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class PassthroughEvent:
    """Known tags that carry no state (acks, errors, label notices)."""

    event: str
    payload: dict[str, Any]

    @property
    def tag(self) -> str:
        return self.event


@dataclass
class UnknownEvent:
    event: str
    payload: dict[str, Any]

    @property
    def tag(self) -> str:
        return self.event


PanelEvent = Union[
    FullStateEvent,
    RelayUpdateEvent,
    CurtainUpdateEvent,
    ContactUpdateEvent,
    BacklightUpdateEvent,
    SceneStatusEvent,
    NetworkStatusEvent,
    PassthroughEvent,
    UnknownEvent,
]

PASSTHROUGH_TAGS = frozenset({"ack", "error", "config_saved", "device_label", "device_label_update"})


def _parse_relay_update(data: dict[str, Any]) -> RelayUpdateEvent:
    relay = data.get("relay")
    if isinstance(relay, dict) and "index" in relay:
        return RelayUpdateEvent(
            updates=[RelayState(index=int(relay["index"]), state=bool(relay.get("state")), name=relay.get("name"))]
        )

    updates: list[RelayState] = []
    device = data.get("device")
    if isinstance(device, dict):
        for key, value in device.items():
            try:
                index = int(key)
            except (TypeError, ValueError):
                continue
            updates.append(RelayState(index=index, state=bool(value)))
    return RelayUpdateEvent(updates=updates)


def parse_panel_message(raw: str | bytes) -> PanelEvent | None:
    """Parse one frame. Returns ``None`` for malformed or untagged frames."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Dropping non-JSON panel frame: %.120s", raw)
        return None
    if not isinstance(data, dict):
        return None

    event = data.get("event")
    if not isinstance(event, str) or not event:
        logger.warning("Dropping panel frame without event tag: %.120s", raw)
        return None

    try:
        return _parse_event(event, data)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning("Dropping malformed %s frame: %s", event, e)
        return None


def _parse_event(event: str, data: dict[str, Any]) -> PanelEvent | None:
    if event == "full_state":
        return FullStateEvent(state=PanelFullState.from_payload(data))
    if event == "relay_update":
        return _parse_relay_update(data)
    if event == "curtain_update":
        curtain = data.get("curtain")
        if isinstance(curtain, dict) and "index" in curtain:
            return CurtainUpdateEvent(
                curtain=CurtainState(
                    index=int(curtain["index"]),
                    state=parse_curtain_state(curtain.get("state")),
                    name=curtain.get("name"),
                )
            )
        return None
    if event == "contact_update":
        contact = data.get("contact")
        if isinstance(contact, dict) and "index" in contact:
            return ContactUpdateEvent(
                contact=ContactState(
                    index=int(contact["index"]),
                    state=parse_contact_state(contact.get("state")),
                    name=contact.get("name"),
                )
            )
        return None
    if event == "backlight_update":
        backlight = data.get("backlight")
        if isinstance(backlight, dict) and "state" in backlight:
            return BacklightUpdateEvent(state=bool(backlight["state"]))
        return None
    if event == "scene_status":
        return SceneStatusEvent(name=data.get("name"), status=data.get("status"))
    if event == "network_status":
        return NetworkStatusEvent(connected=data.get("connected"), ip=data.get("ip"), payload=data)
    if event in PASSTHROUGH_TAGS:
        return PassthroughEvent(event=event, payload=data)
    return UnknownEvent(event=event, payload=data)


def event_payload(event: PanelEvent) -> Any:
    """JSON-ready payload forwarded to subscribers for an event."""
    if isinstance(event, FullStateEvent):
        return event.state.to_dict()
    if isinstance(event, RelayUpdateEvent):
        return [u.to_dict() for u in event.updates]
    if isinstance(event, CurtainUpdateEvent):
        return event.curtain.to_dict()
    if isinstance(event, ContactUpdateEvent):
        return event.contact.to_dict()
    if isinstance(event, BacklightUpdateEvent):
        return {"state": event.state}
    if isinstance(event, SceneStatusEvent):
        return {"name": event.name, "status": event.status}
    if isinstance(event, NetworkStatusEvent):
        return event.payload
    return event.payload


# --- Outbound commands -------------------------------------------------------


class CommandType(str, Enum):
    REQUEST_STATE = "request_state"
    SET_RELAY = "set_relay"
    TOGGLE_RELAY = "toggle_relay"
    TOGGLE_ALL = "toggle_all"
    CURTAIN = "curtain"
    SCENE_ACTIVATE = "scene_activate"
    ALL_OFF = "all_off"
    BACKLIGHT = "backlight"
    LOCK_BUTTONS = "lock_buttons"
    RESTART = "restart"
    UPDATE = "update"


class CurtainAction(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    STOP = "stop"


@dataclass(frozen=True)
class PanelCommand:
    command: CommandType
    index: int | None = None
    state: bool | None = None
    action: CurtainAction | None = None

    def to_wire(self) -> str:
        body: dict[str, Any] = {"command": self.command.value}
        if self.index is not None:
            body["index"] = self.index
        if self.state is not None:
            body["state"] = self.state
        if self.action is not None:
            body["action"] = self.action.value
        return json.dumps(body)


REQUEST_STATE = PanelCommand(CommandType.REQUEST_STATE)
