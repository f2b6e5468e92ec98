"""Panel registry — one websocket client per panel, fan-out to live listeners."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from panelhub.services.panel_client import MessageHandler, PanelClient, StatusHandler
from panelhub.services.panel_messages import (
    BacklightUpdateEvent,
    ContactUpdateEvent,
    CurtainUpdateEvent,
    FullStateEvent,
    PanelCommand,
    PanelEvent,
    RelayUpdateEvent,
    event_payload,
)
from panelhub.services.panel_state import ConnectionStatus, LivePanelState, now_ms

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, MessageHandler, StatusHandler], PanelClient]


class RegistryEventType(str, Enum):
    PANEL_STATE = "panel_state"
    RELAY_UPDATE = "relay_update"
    CURTAIN_UPDATE = "curtain_update"
    CONTACT_UPDATE = "contact_update"
    PANEL_CONNECTED = "panel_connected"
    PANEL_DISCONNECTED = "panel_disconnected"
    PANEL_ERROR = "panel_error"
    HEARTBEAT = "heartbeat"


@dataclass
class RegistryMessage:
    type: RegistryEventType
    ip: str
    timestamp: int
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": self.type.value, "ip": self.ip, "timestamp": self.timestamp}
        if self.data is not None:
            body["data"] = self.data
        return body


Listener = Callable[[RegistryMessage], None]


def _default_client_factory(
    ip: str, on_message: MessageHandler, on_status_change: StatusHandler
) -> PanelClient:
    return PanelClient(ip, on_message, on_status_change)


class PanelRegistry:
    """Owns every panel link and the derived :class:`LivePanelState` per IP.

    A panel IP maps to at most one client; a state entry exists exactly while
    its client is registered.  Listeners receive every state change as a
    :class:`RegistryMessage`.
    """

    def __init__(self, client_factory: ClientFactory | None = None):
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, PanelClient] = {}
        self._states: dict[str, LivePanelState] = {}
        self._listeners: list[Listener] = []

    # --- Connection management -------------------------------------------

    def connect_panel(self, ip: str) -> None:
        """Start a link to ``ip``. Idempotent while a client exists."""
        if ip in self._clients:
            return
        logger.info("Connecting to panel %s", ip)
        self._states[ip] = LivePanelState(ip=ip)
        client = self._client_factory(
            ip,
            lambda event: self._handle_message(ip, client, event),
            lambda status, error: self._handle_status(ip, client, status, error),
        )
        self._clients[ip] = client
        client.connect()

    def connect_panels(self, ips: Iterable[str]) -> None:
        for ip in ips:
            self.connect_panel(ip)

    async def disconnect_panel(self, ip: str) -> None:
        # State leaves with its client, before the await
        client = self._clients.pop(ip, None)
        if client is None:
            return
        self._states.pop(ip, None)
        await client.disconnect()
        logger.info("Disconnected from panel %s", ip)
        self._broadcast(RegistryEventType.PANEL_DISCONNECTED, ip)

    async def disconnect_all(self) -> None:
        for ip in list(self._clients):
            await self.disconnect_panel(ip)

    async def reset(self) -> int:
        """Drop every panel link and all tracked state. Returns how many links were live."""
        previous = len(self.get_connected_panel_ips())
        await self.disconnect_all()
        self._states.clear()
        logger.info("Panel registry reset, had %d connected panels", previous)
        return previous

    # --- Commands ----------------------------------------------------------

    async def send_command(self, ip: str, command: PanelCommand) -> bool:
        client = self._clients.get(ip)
        if client is None:
            return False
        return await client.send_command(command)

    async def send_command_to_many(self, ips: Iterable[str], command: PanelCommand) -> dict[str, bool]:
        """Dispatch to several panels concurrently. Returns per-IP delivery."""
        targets = list(dict.fromkeys(ips))
        results = await asyncio.gather(*(self.send_command(ip, command) for ip in targets))
        return dict(zip(targets, results))

    async def broadcast_command(self, command: PanelCommand) -> dict[str, bool]:
        return await self.send_command_to_many(self.get_connected_panel_ips(), command)

    # --- State queries -----------------------------------------------------

    def get_panel_state(self, ip: str) -> LivePanelState | None:
        return self._states.get(ip)

    def get_all_panel_states(self) -> list[LivePanelState]:
        return list(self._states.values())

    def get_connected_panel_ips(self) -> list[str]:
        return [
            ip for ip, state in self._states.items() if state.connection_status == ConnectionStatus.CONNECTED
        ]

    # --- Listeners ---------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        """Subscribe and immediately replay the current state of every panel."""
        self._listeners.append(listener)
        for state in list(self._states.values()):
            message = RegistryMessage(
                type=RegistryEventType.PANEL_STATE,
                ip=state.ip,
                timestamp=now_ms(),
                data=state.to_dict(),
            )
            self._deliver(listener, message)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def broadcast_heartbeat(self) -> None:
        if self._listeners:
            self._broadcast(RegistryEventType.HEARTBEAT, "")

    # --- Client callbacks --------------------------------------------------

    def _handle_status(
        self, ip: str, client: PanelClient, status: ConnectionStatus, error: str | None
    ) -> None:
        state = self._states.get(ip)
        if state is None or self._clients.get(ip) is not client:
            return

        now = now_ms()
        state.connection_status = status
        state.last_updated = now

        if status == ConnectionStatus.CONNECTED:
            state.last_connected = now
            state.last_error = None
            self._broadcast(RegistryEventType.PANEL_CONNECTED, ip)
        elif status == ConnectionStatus.DISCONNECTED:
            self._broadcast(RegistryEventType.PANEL_DISCONNECTED, ip)
        elif status == ConnectionStatus.ERROR:
            state.last_error = error
            self._broadcast(RegistryEventType.PANEL_ERROR, ip, {"error": error})

    def _handle_message(self, ip: str, client: PanelClient, event: PanelEvent) -> None:
        state = self._states.get(ip)
        if state is None or self._clients.get(ip) is not client:
            return

        state.full_state = client.full_state
        state.last_updated = now_ms()

        if isinstance(event, (FullStateEvent, BacklightUpdateEvent)):
            self._broadcast(RegistryEventType.PANEL_STATE, ip, state.to_dict())
        elif isinstance(event, RelayUpdateEvent):
            self._broadcast(RegistryEventType.RELAY_UPDATE, ip, event_payload(event))
        elif isinstance(event, CurtainUpdateEvent):
            self._broadcast(RegistryEventType.CURTAIN_UPDATE, ip, event_payload(event))
        elif isinstance(event, ContactUpdateEvent):
            self._broadcast(RegistryEventType.CONTACT_UPDATE, ip, event_payload(event))

    def _broadcast(self, type_: RegistryEventType, ip: str, data: Any = None) -> None:
        message = RegistryMessage(type=type_, ip=ip, timestamp=now_ms(), data=data)
        for listener in list(self._listeners):
            self._deliver(listener, message)

    def _deliver(self, listener: Listener, message: RegistryMessage) -> None:
        try:
            listener(message)
        except Exception as e:
            logger.warning("Dropping failing registry listener: %s", e)
            self.remove_listener(listener)
