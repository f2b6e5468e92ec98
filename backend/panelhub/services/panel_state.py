"""Panel state model — live link status, full-state snapshots, relay pair config."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds (wire format for all timestamps)."""
    return int(time.time() * 1000)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class CurtainPosition(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    OPENING = "opening"
    CLOSING = "closing"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class ContactPosition(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"


MOVING_CURTAIN_STATES = frozenset({CurtainPosition.OPENING, CurtainPosition.CLOSING})


def parse_curtain_state(value: Any) -> CurtainPosition:
    """Normalise free-form curtain text ("Opening...", "closed") to a position."""
    if isinstance(value, str):
        lower = value.lower()
        # Order matters: "opening" contains "open", "closing" contains "clos"
        if "opening" in lower:
            return CurtainPosition.OPENING
        if "closing" in lower:
            return CurtainPosition.CLOSING
        if "open" in lower:
            return CurtainPosition.OPEN
        if "close" in lower:
            return CurtainPosition.CLOSED
        if "stop" in lower:
            return CurtainPosition.STOPPED
    return CurtainPosition.UNKNOWN


def parse_contact_state(value: Any) -> ContactPosition:
    if isinstance(value, bool):
        return ContactPosition.OPEN if value else ContactPosition.CLOSED
    if isinstance(value, str):
        lower = value.lower()
        if "open" in lower:
            return ContactPosition.OPEN
        if "close" in lower:
            return ContactPosition.CLOSED
    return ContactPosition.UNKNOWN


@dataclass
class RelayState:
    index: int
    state: bool
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "state": self.state, "name": self.name}


@dataclass
class CurtainState:
    index: int
    state: CurtainPosition = CurtainPosition.UNKNOWN
    name: str | None = None

    @property
    def is_moving(self) -> bool:
        return self.state in MOVING_CURTAIN_STATES

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "state": self.state.value, "name": self.name}


@dataclass
class ContactState:
    index: int
    state: ContactPosition = ContactPosition.UNKNOWN
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "state": self.state.value, "name": self.name}


# (attribute, wire key) pairs for the scalar metadata carried by full_state
_FULL_STATE_FIELDS: tuple[tuple[str, str], ...] = (
    # Network
    ("wifi_connected", "wifiConnected"),
    ("ssid", "ssid"),
    ("ip", "ip"),
    ("wifi_quality", "wifiQuality"),
    # MQTT
    ("mqtt_connected", "mqttConnected"),
    ("mqtt_device_name", "mqttDeviceName"),
    ("mqtt_server", "mqttServer"),
    # Sync
    ("sync_enabled", "syncEnabled"),
    ("sync_ip", "syncIp"),
    ("sync_port", "syncPort"),
    # Panel
    ("buttons_locked", "buttonsLocked"),
    ("status_led_on", "statusLedOn"),
    # Scene
    ("scene_is_executing", "sceneIsExecuting"),
    ("scene_name", "sceneName"),
    ("active_scene_index", "activeSceneIndex"),
    # Time
    ("local_time", "localTime"),
    ("local_epoch", "localEpoch"),
    ("time_zone", "timeZone"),
    ("time_sync_status", "timeSyncStatus"),
    # Device
    ("uptime_ms", "uptimeMs"),
    ("version", "version"),
    ("hostname", "hostname"),
    ("device_id", "deviceId"),
)


def _as_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _indexed_entries(value: Any) -> list[tuple[int, dict[str, Any]]]:
    """(index, entry) pairs from a full_state list; entries without a numeric index are skipped."""
    if not isinstance(value, list):
        return []
    entries = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        index = _as_index(entry.get("index"))
        if index is not None:
            entries.append((index, entry))
    return entries


@dataclass
class PanelFullState:
    """Complete snapshot reported by a panel in its ``full_state`` event."""

    wifi_connected: bool | None = None
    ssid: str | None = None
    ip: str | None = None
    wifi_quality: int | None = None
    mqtt_connected: bool | None = None
    mqtt_device_name: str | None = None
    mqtt_server: str | None = None
    sync_enabled: bool | None = None
    sync_ip: str | None = None
    sync_port: int | None = None
    buttons_locked: bool | None = None
    status_led_on: bool | None = None
    scene_is_executing: bool | None = None
    scene_name: str | None = None
    active_scene_index: int | None = None
    local_time: str | None = None
    local_epoch: int | None = None
    time_zone: str | None = None
    time_sync_status: str | None = None
    uptime_ms: int | None = None
    version: str | None = None
    hostname: str | None = None
    device_id: str | None = None
    relays: list[RelayState] = field(default_factory=list)
    curtains: list[CurtainState] = field(default_factory=list)
    contacts: list[ContactState] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "PanelFullState":
        kwargs = {attr: data.get(key) for attr, key in _FULL_STATE_FIELDS}
        return cls(
            **kwargs,
            relays=[
                RelayState(index=i, state=bool(r.get("state")), name=r.get("name"))
                for i, r in _indexed_entries(data.get("relays"))
            ],
            curtains=[
                CurtainState(index=i, state=parse_curtain_state(c.get("state")), name=c.get("name"))
                for i, c in _indexed_entries(data.get("curtains"))
            ],
            contacts=[
                ContactState(index=i, state=parse_contact_state(c.get("state")), name=c.get("name"))
                for i, c in _indexed_entries(data.get("contacts"))
            ],
        )

    def find_relay(self, index: int) -> RelayState | None:
        return next((r for r in self.relays if r.index == index), None)

    def find_curtain(self, index: int) -> CurtainState | None:
        return next((c for c in self.curtains if c.index == index), None)

    def find_contact(self, index: int) -> ContactState | None:
        return next((c for c in self.contacts if c.index == index), None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {key: getattr(self, attr) for attr, key in _FULL_STATE_FIELDS}
        data["relays"] = [r.to_dict() for r in self.relays]
        data["curtains"] = [c.to_dict() for c in self.curtains]
        data["contacts"] = [c.to_dict() for c in self.contacts]
        return data


@dataclass
class LivePanelState:
    """Registry-owned view of one connected panel."""

    ip: str
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTING
    last_connected: int | None = None
    last_error: str | None = None
    full_state: PanelFullState | None = None
    last_updated: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "connectionStatus": self.connection_status.value,
            "lastConnected": self.last_connected,
            "lastError": self.last_error,
            "fullState": self.full_state.to_dict() if self.full_state else None,
            "lastUpdated": self.last_updated,
        }


# --- Relay pair configuration ------------------------------------------------


class PairMode(str, Enum):
    NORMAL = "normal"
    CURTAIN = "curtain"
    VENETIAN = "venetian"
    LINKED = "linked"


class RelayMode(str, Enum):
    SWITCH = "switch"
    MOMENTARY = "momentary"
    DISABLED = "disabled"


class DeviceType(str, Enum):
    LIGHT = "light"
    MOMENTARY = "momentary"
    CURTAIN = "curtain"
    VENETIAN = "venetian"
    HIDDEN = "hidden"


@dataclass
class RelayPairConfig:
    pair_index: int
    pair_mode: PairMode = PairMode.NORMAL
    relay_modes: tuple[RelayMode, RelayMode] = (RelayMode.SWITCH, RelayMode.SWITCH)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pairIndex": self.pair_index,
            "pairMode": self.pair_mode.value,
            "relayModes": [m.value for m in self.relay_modes],
        }


@dataclass
class PanelSettings:
    """Best-effort metadata from the panel settings page. ``None`` means unknown."""

    logging: bool | None = None
    long_press_ms: int | None = None
    relay_pairs: list[RelayPairConfig] | None = None

    def is_empty(self) -> bool:
        return self.logging is None and self.long_press_ms is None and self.relay_pairs is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.logging is not None:
            data["logging"] = self.logging
        if self.long_press_ms is not None:
            data["longPressMs"] = self.long_press_ms
        if self.relay_pairs is not None:
            data["relayPairs"] = [p.to_dict() for p in self.relay_pairs]
        return data


_LINKED_NAME = re.compile(r"[-_\s]?link$", re.IGNORECASE)

_RELAY_MODE_TYPES = {
    RelayMode.SWITCH: DeviceType.LIGHT,
    RelayMode.MOMENTARY: DeviceType.MOMENTARY,
    RelayMode.DISABLED: DeviceType.HIDDEN,
}


def _find_pair(pairs: list[RelayPairConfig] | None, pair_index: int) -> RelayPairConfig | None:
    if not pairs:
        return None
    return next((p for p in pairs if p.pair_index == pair_index), None)


def relay_device_type(
    index: int, name: str | None, relay_pairs: list[RelayPairConfig] | None
) -> DeviceType:
    """Classify a raw relay index into the user-facing device type."""
    pair = _find_pair(relay_pairs, index // 2)
    if pair is None:
        return DeviceType.LIGHT if name and name.strip() else DeviceType.HIDDEN
    if pair.pair_mode != PairMode.NORMAL:
        # Both relays drive the curtain motor
        return DeviceType.HIDDEN
    return _RELAY_MODE_TYPES[pair.relay_modes[index % 2]]


def curtain_device_type(
    index: int, name: str | None, relay_pairs: list[RelayPairConfig] | None
) -> DeviceType:
    """Classify a raw curtain index into the user-facing device type."""
    if name and _LINKED_NAME.search(name.strip()):
        return DeviceType.HIDDEN
    pair = _find_pair(relay_pairs, index)
    if pair is None:
        return DeviceType.CURTAIN if name and name.strip() else DeviceType.HIDDEN
    if pair.pair_mode == PairMode.CURTAIN:
        return DeviceType.CURTAIN
    if pair.pair_mode == PairMode.VENETIAN:
        return DeviceType.VENETIAN
    return DeviceType.HIDDEN
