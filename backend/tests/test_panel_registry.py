"""Tests for PanelRegistry — client ownership, state tracking, listener fan-out."""

import asyncio

import pytest

from panelhub.services.panel_messages import (
    CommandType,
    FullStateEvent,
    PanelCommand,
    RelayUpdateEvent,
)
from panelhub.services.panel_registry import PanelRegistry, RegistryEventType
from panelhub.services.panel_state import ConnectionStatus, PanelFullState, RelayState


class FakeClient:
    def __init__(self, ip, on_message, on_status_change):
        self.ip = ip
        self.on_message = on_message
        self.on_status_change = on_status_change
        self.full_state = None
        self.connect_calls = 0
        self.disconnected = False
        self.deliver = True
        self.sent = []
        self.release: asyncio.Event | None = None

    def connect(self):
        self.connect_calls += 1

    async def disconnect(self):
        if self.release is not None:
            await self.release.wait()
        self.disconnected = True

    async def send_command(self, command):
        self.sent.append(command)
        return self.deliver


@pytest.fixture
def clients():
    return {}


@pytest.fixture
def registry(clients):
    def factory(ip, on_message, on_status_change):
        client = FakeClient(ip, on_message, on_status_change)
        clients[ip] = client
        return client

    return PanelRegistry(client_factory=factory)


def test_connect_panel_is_idempotent(registry, clients):
    registry.connect_panel("10.0.0.5")
    registry.connect_panel("10.0.0.5")

    assert clients["10.0.0.5"].connect_calls == 1
    state = registry.get_panel_state("10.0.0.5")
    assert state.connection_status == ConnectionStatus.CONNECTING


def test_status_changes_are_broadcast(registry, clients):
    received = []
    registry.add_listener(received.append)
    registry.connect_panels(["10.0.0.5", "10.0.0.6"])

    clients["10.0.0.5"].on_status_change(ConnectionStatus.CONNECTED, None)
    clients["10.0.0.6"].on_status_change(ConnectionStatus.ERROR, "Connection refused")

    assert [m.type for m in received] == [RegistryEventType.PANEL_CONNECTED, RegistryEventType.PANEL_ERROR]
    assert received[1].to_dict()["data"] == {"error": "Connection refused"}
    assert registry.get_connected_panel_ips() == ["10.0.0.5"]
    assert registry.get_panel_state("10.0.0.5").last_connected is not None
    assert registry.get_panel_state("10.0.0.6").last_error == "Connection refused"


def test_new_listener_gets_replay(registry, clients):
    registry.connect_panels(["10.0.0.5", "10.0.0.6"])
    received = []
    registry.add_listener(received.append)

    assert [m.type for m in received] == [RegistryEventType.PANEL_STATE] * 2
    assert {m.ip for m in received} == {"10.0.0.5", "10.0.0.6"}
    assert received[0].data["connectionStatus"] == "connecting"


def test_messages_update_state(registry, clients, full_state_payload):
    registry.connect_panel("10.0.0.21")
    received = []
    registry.add_listener(received.append)
    received.clear()

    client = clients["10.0.0.21"]
    state = PanelFullState.from_payload(full_state_payload)
    client.full_state = state
    client.on_message(FullStateEvent(state=state))
    client.on_message(RelayUpdateEvent(updates=[RelayState(index=1, state=False)]))

    assert received[0].type == RegistryEventType.PANEL_STATE
    assert received[0].data["fullState"]["hostname"] == "Kitchen"
    assert received[1].type == RegistryEventType.RELAY_UPDATE
    assert received[1].data == [{"index": 1, "state": False, "name": None}]
    assert registry.get_panel_state("10.0.0.21").full_state is state


@pytest.mark.asyncio
async def test_disconnect_panel_drops_state(registry, clients):
    registry.connect_panel("10.0.0.5")
    received = []
    registry.add_listener(received.append)
    received.clear()

    await registry.disconnect_panel("10.0.0.5")

    assert clients["10.0.0.5"].disconnected
    assert registry.get_panel_state("10.0.0.5") is None
    assert [m.type for m in received] == [RegistryEventType.PANEL_DISCONNECTED]

    # Late callbacks from the dropped client are ignored
    clients["10.0.0.5"].on_status_change(ConnectionStatus.CONNECTED, None)
    assert registry.get_all_panel_states() == []


@pytest.mark.asyncio
async def test_send_command_routing(registry, clients):
    registry.connect_panels(["10.0.0.5", "10.0.0.6"])
    clients["10.0.0.6"].deliver = False
    command = PanelCommand(CommandType.ALL_OFF)

    assert await registry.send_command("10.0.0.99", command) is False
    results = await registry.send_command_to_many(["10.0.0.5", "10.0.0.6", "10.0.0.7"], command)

    assert results == {"10.0.0.5": True, "10.0.0.6": False, "10.0.0.7": False}
    assert clients["10.0.0.5"].sent == [command]


@pytest.mark.asyncio
async def test_broadcast_command_targets_connected(registry, clients):
    registry.connect_panels(["10.0.0.5", "10.0.0.6"])
    clients["10.0.0.5"].on_status_change(ConnectionStatus.CONNECTED, None)

    results = await registry.broadcast_command(PanelCommand(CommandType.BACKLIGHT, state=True))

    assert results == {"10.0.0.5": True}
    assert clients["10.0.0.6"].sent == []


def test_heartbeat_only_with_listeners(registry):
    registry.broadcast_heartbeat()
    received = []
    registry.add_listener(received.append)
    registry.broadcast_heartbeat()

    assert len(received) == 1
    assert received[0].to_dict()["type"] == "heartbeat"
    assert received[0].ip == ""
    assert "data" not in received[0].to_dict()


def test_failing_listener_is_removed(registry):
    def broken(message):
        raise RuntimeError("client went away")

    registry.add_listener(broken)
    assert registry.listener_count == 1
    registry.broadcast_heartbeat()
    assert registry.listener_count == 0


def test_remove_listener(registry):
    received = []
    registry.add_listener(received.append)
    registry.remove_listener(received.append)
    registry.broadcast_heartbeat()
    assert received == []


@pytest.mark.asyncio
async def test_reconnect_during_disconnect_keeps_new_state(registry, clients):
    registry.connect_panel("10.0.0.5")
    old = clients["10.0.0.5"]
    old.release = asyncio.Event()

    pending = asyncio.create_task(registry.disconnect_panel("10.0.0.5"))
    await asyncio.sleep(0)
    registry.connect_panel("10.0.0.5")
    new = clients["10.0.0.5"]
    assert new is not old

    old.release.set()
    await pending

    # Late callbacks from the old client must not touch the new one's state
    old.on_status_change(ConnectionStatus.DISCONNECTED, None)
    new.on_status_change(ConnectionStatus.CONNECTED, None)

    state = registry.get_panel_state("10.0.0.5")
    assert state is not None
    assert state.connection_status == ConnectionStatus.CONNECTED
    assert registry.get_connected_panel_ips() == ["10.0.0.5"]
    assert old.disconnected and not new.disconnected


@pytest.mark.asyncio
async def test_reset_drops_all_panels(registry, clients):
    events = []
    registry.connect_panels(["10.0.0.5", "10.0.0.6"])
    clients["10.0.0.5"].on_status_change(ConnectionStatus.CONNECTED, None)
    registry.add_listener(events.append)

    assert await registry.reset() == 1

    assert registry.get_all_panel_states() == []
    assert all(c.disconnected for c in clients.values())
    assert {m.ip for m in events if m.type == RegistryEventType.PANEL_DISCONNECTED} == {"10.0.0.5", "10.0.0.6"}
    assert await registry.send_command("10.0.0.5", PanelCommand(CommandType.ALL_OFF)) is False
