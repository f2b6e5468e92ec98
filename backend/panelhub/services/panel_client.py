"""Persistent websocket link to a single panel — connect, parse, reconnect."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from panelhub.config import settings
from panelhub.services.panel_messages import (
    REQUEST_STATE,
    BacklightUpdateEvent,
    ContactUpdateEvent,
    CurtainUpdateEvent,
    FullStateEvent,
    NetworkStatusEvent,
    PanelCommand,
    PanelEvent,
    RelayUpdateEvent,
    UnknownEvent,
    parse_panel_message,
)
from panelhub.services.panel_state import ConnectionStatus, PanelFullState

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PanelEvent], None]
StatusHandler = Callable[[ConnectionStatus, "str | None"], None]
Connector = Callable[..., Awaitable[Any]]


class PanelClient:
    """Websocket client for one panel.

    Lifecycle: disconnected -> connecting -> connected | error -> (fixed delay)
    -> connecting ...  The loop only ends on :meth:`disconnect`; link errors
    and closes always lead to another attempt after ``reconnect_delay``.
    """

    def __init__(
        self,
        ip: str,
        on_message: MessageHandler,
        on_status_change: StatusHandler,
        *,
        port: int | None = None,
        connect_timeout: float | None = None,
        reconnect_delay: float | None = None,
        ping_interval: float | None = None,
        connector: Connector | None = None,
    ):
        self.ip = ip
        self._on_message = on_message
        self._on_status_change = on_status_change
        self._port = port or settings.panel_ws_port
        self._connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.panel_connect_timeout_ms / 1000
        )
        self._reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.panel_reconnect_delay_ms / 1000
        )
        self._ping_interval = (
            ping_interval if ping_interval is not None else settings.panel_ping_interval_ms / 1000
        )
        self._connect = connector or websockets.connect

        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._should_reconnect = False
        self._status = ConnectionStatus.DISCONNECTED
        self._full_state: PanelFullState | None = None
        self._last_error: str | None = None

    @property
    def url(self) -> str:
        return f"ws://{self.ip}:{self._port}/"

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def full_state(self) -> PanelFullState | None:
        return self._full_state

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def connect(self) -> None:
        """Start the connection loop. No-op if it is already running."""
        if self._task is not None and not self._task.done():
            return
        self._should_reconnect = True
        self._task = asyncio.create_task(self._run(), name=f"panel-{self.ip}")

    async def disconnect(self) -> None:
        """Stop for good: cancel pending reconnects and close the link."""
        self._should_reconnect = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_ws()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def send_command(self, command: PanelCommand) -> bool:
        """Send a command. ``False`` means not delivered, never an exception."""
        ws = self._ws
        if ws is None or self._status != ConnectionStatus.CONNECTED:
            return False
        try:
            await ws.send(command.to_wire())
            return True
        except (ConnectionClosed, OSError) as e:
            logger.warning("[%s] Failed to send %s: %s", self.ip, command.command.value, e)
            return False

    async def request_state(self) -> bool:
        return await self.send_command(REQUEST_STATE)

    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self._should_reconnect:
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                ws = await self._connect(
                    self.url,
                    open_timeout=self._connect_timeout,
                    ping_interval=self._ping_interval,
                    ping_timeout=self._ping_interval,
                )
            except TimeoutError:
                logger.info("[%s] Connection timed out", self.ip)
                self._handle_error("Connection timed out")
            except (OSError, WebSocketException) as e:
                logger.debug("[%s] Connect failed: %s", self.ip, e)
                self._handle_error(str(e) or e.__class__.__name__)
            else:
                self._ws = ws
                await self._session(ws)

            if not self._should_reconnect:
                break
            logger.debug("[%s] Reconnecting in %.1fs", self.ip, self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)

    async def _session(self, ws: Any) -> None:
        logger.info("[%s] Panel link connected", self.ip)
        self._last_error = None
        self._set_status(ConnectionStatus.CONNECTED)
        try:
            await self.request_state()
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info("[%s] Panel link closed: code=%s reason=%s", self.ip, e.code, e.reason)
        except (OSError, WebSocketException) as e:
            logger.error("[%s] Panel link error: %s", self.ip, e)
            self._handle_error(str(e) or e.__class__.__name__)
        finally:
            await self._close_ws()

        if self._should_reconnect and self._status == ConnectionStatus.CONNECTED:
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("[%s] Error while closing link: %s", self.ip, e)

    def _handle_frame(self, raw: str | bytes) -> None:
        event = parse_panel_message(raw)
        if event is None:
            return
        self._apply(event)
        if isinstance(event, UnknownEvent):
            logger.debug("[%s] Unknown event: %s", self.ip, event.event)
        try:
            self._on_message(event)
        except Exception as e:
            logger.error("[%s] Message handler failed: %s", self.ip, e)

    def _apply(self, event: PanelEvent) -> None:
        """Fold an event into the cached full state."""
        if isinstance(event, FullStateEvent):
            self._full_state = event.state
            return

        state = self._full_state
        if state is None:
            return

        if isinstance(event, RelayUpdateEvent):
            for update in event.updates:
                relay = state.find_relay(update.index)
                if relay:
                    relay.state = update.state
                    if update.name:
                        relay.name = update.name
        elif isinstance(event, CurtainUpdateEvent):
            curtain = state.find_curtain(event.curtain.index)
            if curtain:
                curtain.state = event.curtain.state
                if event.curtain.name:
                    curtain.name = event.curtain.name
        elif isinstance(event, ContactUpdateEvent):
            contact = state.find_contact(event.contact.index)
            if contact:
                contact.state = event.contact.state
                if event.contact.name:
                    contact.name = event.contact.name
        elif isinstance(event, BacklightUpdateEvent):
            state.status_led_on = event.state
        elif isinstance(event, NetworkStatusEvent):
            state.wifi_connected = event.connected
            state.ip = event.ip

    def _handle_error(self, message: str) -> None:
        self._last_error = message
        self._set_status(ConnectionStatus.ERROR, message)

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        if self._status == status:
            return
        self._status = status
        try:
            self._on_status_change(status, error)
        except Exception as e:
            logger.error("[%s] Status handler failed: %s", self.ip, e)
