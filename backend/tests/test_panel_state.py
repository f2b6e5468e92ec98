"""Tests for panel state parsing and device-type classification."""

import pytest

from panelhub.services.panel_state import (
    ContactPosition,
    CurtainPosition,
    DeviceType,
    LivePanelState,
    PairMode,
    PanelFullState,
    PanelSettings,
    RelayMode,
    RelayPairConfig,
    curtain_device_type,
    parse_contact_state,
    parse_curtain_state,
    relay_device_type,
)


class TestCurtainParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Opening...", CurtainPosition.OPENING),
            ("closing", CurtainPosition.CLOSING),
            ("Open", CurtainPosition.OPEN),
            ("Closed", CurtainPosition.CLOSED),
            ("stopped", CurtainPosition.STOPPED),
            ("???", CurtainPosition.UNKNOWN),
            (None, CurtainPosition.UNKNOWN),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_curtain_state(raw) == expected

    def test_contact_bool(self):
        assert parse_contact_state(True) == ContactPosition.OPEN
        assert parse_contact_state(False) == ContactPosition.CLOSED
        assert parse_contact_state(3) == ContactPosition.UNKNOWN


class TestFullState:
    def test_from_payload(self, full_state_payload):
        state = PanelFullState.from_payload(full_state_payload)
        assert state.hostname == "Kitchen"
        assert state.device_id == "cbx-0021"
        assert [r.state for r in state.relays] == [False, True]
        assert state.find_curtain(0).state == CurtainPosition.CLOSED
        assert state.find_contact(0).state == ContactPosition.CLOSED
        assert state.find_relay(7) is None

    def test_to_dict_uses_wire_keys(self, full_state_payload):
        data = PanelFullState.from_payload(full_state_payload).to_dict()
        assert data["wifiConnected"] is True
        assert data["deviceId"] == "cbx-0021"
        assert data["curtains"] == [{"index": 0, "state": "closed", "name": "Window"}]

    def test_live_state_dict(self):
        live = LivePanelState(ip="10.0.0.5")
        data = live.to_dict()
        assert data["connectionStatus"] == "connecting"
        assert data["fullState"] is None


class TestSettings:
    def test_empty(self):
        assert PanelSettings().is_empty()
        assert PanelSettings().to_dict() == {}

    def test_to_dict_skips_unknown(self):
        assert PanelSettings(logging=False).to_dict() == {"logging": False}


class TestClassification:
    pairs = [
        RelayPairConfig(0, PairMode.NORMAL, (RelayMode.SWITCH, RelayMode.MOMENTARY)),
        RelayPairConfig(1, PairMode.CURTAIN),
        RelayPairConfig(2, PairMode.VENETIAN),
    ]

    def test_relays_in_normal_pair(self):
        assert relay_device_type(0, "Lamp", self.pairs) == DeviceType.LIGHT
        assert relay_device_type(1, "Bell", self.pairs) == DeviceType.MOMENTARY

    def test_relays_in_curtain_pair_are_hidden(self):
        assert relay_device_type(2, "Motor up", self.pairs) == DeviceType.HIDDEN
        assert relay_device_type(5, "Motor down", self.pairs) == DeviceType.HIDDEN

    def test_curtains(self):
        assert curtain_device_type(0, "Any", self.pairs) == DeviceType.HIDDEN
        assert curtain_device_type(1, "Living", self.pairs) == DeviceType.CURTAIN
        assert curtain_device_type(2, "Office", self.pairs) == DeviceType.VENETIAN

    def test_without_pair_config(self):
        assert relay_device_type(4, "Hall", None) == DeviceType.LIGHT
        assert relay_device_type(4, "  ", None) == DeviceType.HIDDEN
        assert curtain_device_type(0, "Blind", None) == DeviceType.CURTAIN
        assert curtain_device_type(0, None, None) == DeviceType.HIDDEN

    def test_linked_curtain_name_hidden(self):
        assert curtain_device_type(1, "Living_link", self.pairs) == DeviceType.HIDDEN
        assert curtain_device_type(1, "Living Link", None) == DeviceType.HIDDEN
