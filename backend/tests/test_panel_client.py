"""Tests for PanelClient — connect lifecycle, frame folding, reconnects."""

import asyncio
import json

import pytest

from panelhub.services.panel_client import PanelClient
from panelhub.services.panel_messages import CommandType, FullStateEvent, PanelCommand, RelayUpdateEvent
from panelhub.services.panel_state import ConnectionStatus


class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    def push(self, frame) -> None:
        self._frames.put_nowait(frame)

    def hang_up(self) -> None:
        self._frames.put_nowait(None)

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Returns queued outcomes in order; exceptions are raised, sockets returned."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict]] = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0) if self.outcomes else FakeWebSocket()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def make_client(connector, messages=None, statuses=None):
    messages = messages if messages is not None else []
    statuses = statuses if statuses is not None else []
    return PanelClient(
        "10.0.0.21",
        messages.append,
        lambda status, error: statuses.append((status, error)),
        connect_timeout=0.5,
        reconnect_delay=0.01,
        ping_interval=5,
        connector=connector,
    )


def test_url_uses_panel_port():
    client = make_client(FakeConnector())
    assert client.url == "ws://10.0.0.21:81/"


@pytest.mark.asyncio
async def test_connect_requests_state_and_folds_updates(full_state_payload):
    ws = FakeWebSocket()
    connector = FakeConnector(ws)
    messages, statuses = [], []
    client = make_client(connector, messages, statuses)

    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    await wait_until(lambda: ws.sent)
    assert json.loads(ws.sent[0]) == {"command": "request_state"}
    assert connector.calls[0][1]["open_timeout"] == 0.5

    ws.push(json.dumps(full_state_payload))
    ws.push('{"event":"relay_update","relay":{"index":0,"state":true}}')
    await wait_until(lambda: len(messages) == 2)

    assert isinstance(messages[0], FullStateEvent)
    assert isinstance(messages[1], RelayUpdateEvent)
    assert client.full_state.find_relay(0).state is True
    assert [s for s, _ in statuses] == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_is_idempotent():
    connector = FakeConnector()
    client = make_client(connector)
    client.connect()
    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    assert len(connector.calls) == 1
    await client.disconnect()


@pytest.mark.asyncio
async def test_failed_connect_retries_after_delay():
    connector = FakeConnector(OSError("Connection refused"), FakeWebSocket())
    statuses = []
    client = make_client(connector, statuses=statuses)

    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)

    assert [s for s, _ in statuses] == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.ERROR,
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
    ]
    assert statuses[1][1] == "Connection refused"
    assert client.last_error is None
    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_timeout_reports_error():
    connector = FakeConnector(TimeoutError(), TimeoutError())
    statuses = []
    client = make_client(connector, statuses=statuses)

    client.connect()
    await wait_until(lambda: any(s == ConnectionStatus.ERROR for s, _ in statuses))
    assert ("Connection timed out" in [e for _, e in statuses])
    await client.disconnect()


@pytest.mark.asyncio
async def test_remote_close_reconnects():
    first = FakeWebSocket()
    connector = FakeConnector(first, FakeWebSocket())
    statuses = []
    client = make_client(connector, statuses=statuses)

    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    first.hang_up()
    await wait_until(lambda: len(connector.calls) == 2 and client.status == ConnectionStatus.CONNECTED)

    assert ConnectionStatus.DISCONNECTED in [s for s, _ in statuses]
    assert first.closed
    await client.disconnect()


@pytest.mark.asyncio
async def test_disconnect_stops_reconnecting():
    ws = FakeWebSocket()
    connector = FakeConnector(ws)
    client = make_client(connector)

    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    await client.disconnect()
    await asyncio.sleep(0.05)

    assert ws.closed
    assert client.status == ConnectionStatus.DISCONNECTED
    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_send_command_when_not_connected():
    client = make_client(FakeConnector())
    assert await client.send_command(PanelCommand(CommandType.ALL_OFF)) is False


@pytest.mark.asyncio
async def test_send_command_when_connected():
    ws = FakeWebSocket()
    client = make_client(FakeConnector(ws))
    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)

    assert await client.send_command(PanelCommand(CommandType.TOGGLE_RELAY, index=1)) is True
    assert json.loads(ws.sent[-1]) == {"command": "toggle_relay", "index": 1}
    await client.disconnect()


@pytest.mark.asyncio
async def test_malformed_frame_keeps_link_alive(full_state_payload):
    ws = FakeWebSocket()
    connector = FakeConnector(ws)
    messages = []
    client = make_client(connector, messages)

    client.connect()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    ws.push(json.dumps(full_state_payload))
    ws.push('{"event":"relay_update","relay":{"index":"x","state":true}}')
    ws.push('{"event":"full_state","relays":[1]}')
    ws.push('{"event":"relay_update","relay":{"index":0,"state":true}}')
    await wait_until(lambda: len(messages) == 3)

    assert isinstance(messages[1], FullStateEvent)
    assert messages[1].state.relays == []
    assert isinstance(messages[2], RelayUpdateEvent)
    assert client.status == ConnectionStatus.CONNECTED
    assert not client._task.done()
    assert len(connector.calls) == 1
    await client.disconnect()
