"""Tests for the panel settings page scraper and writer, and the label API."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from panelhub.services.panel_http import (
    LabelTarget,
    PanelHttpClient,
    PanelHttpError,
    SettingsOperation,
    parse_settings_page,
)
from panelhub.services.panel_state import PairMode, RelayMode

SETTINGS_HTML = """
<html><body>
<form action="/savesettings" method="post">
  <input type="text" id="hostn" name="hostn" value="Living Room">
  <select id="file_logging" name="file_logging">
    <option value="0" selected>Off</option>
    <option value="1">On</option>
  </select>
  <input type="number" id="long_press_duration" name="long_press_duration" value="800">

  <select id="pair_mode_0"><option value="0" selected>Normal</option><option value="1">Curtain</option></select>
  <select id="relay_mode_0_0"><option value="0">Switch</option><option value="1" selected>Momentary</option></select>
  <select id="relay_mode_0_1"><option value="0" selected>Switch</option></select>
  <select id="pair_mode_1"><option value="0">Normal</option><option value="venetian" selected>Venetian</option></select>
</form>
</body></html>
"""


class TestParse:
    def test_full_page(self):
        page = parse_settings_page(SETTINGS_HTML)
        assert page.name == "Living Room"
        assert page.settings.logging is False
        assert page.settings.long_press_ms == 800

        pairs = page.settings.relay_pairs
        assert [p.pair_index for p in pairs] == [0, 1]
        assert pairs[0].pair_mode == PairMode.NORMAL
        assert pairs[0].relay_modes == (RelayMode.MOMENTARY, RelayMode.SWITCH)
        assert pairs[1].pair_mode == PairMode.VENETIAN

    def test_empty_page(self):
        page = parse_settings_page("<html><body>Not found</body></html>")
        assert page.name is None
        assert page.settings.is_empty()

    def test_blank_hostname_has_no_name(self):
        page = parse_settings_page('<input id="hostn" value="   ">')
        assert page.name is None


class FakePanel:
    def __init__(self, get_status=200, post_status=200, timeout=False, label_status=200, label_reply='{"ok":true}'):
        self.get_status = get_status
        self.post_status = post_status
        self.timeout = timeout
        self.label_status = label_status
        self.label_reply = label_reply
        self.posted: dict | None = None
        self.labeled: dict | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.timeout:
            raise httpx.ConnectTimeout("timed out", request=request)
        if request.method == "GET" and request.url.path == "/settings":
            return httpx.Response(self.get_status, text=SETTINGS_HTML)
        if request.method == "POST" and request.url.path == "/savesettings":
            self.posted = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            return httpx.Response(self.post_status, text="saved")
        if request.method == "POST" and request.url.path == "/api/device-label":
            self.labeled = json.loads(request.content)
            return httpx.Response(self.label_status, text=self.label_reply)
        return httpx.Response(404)


def make_client(panel: FakePanel) -> PanelHttpClient:
    return PanelHttpClient(transport=httpx.MockTransport(panel))


@pytest.mark.asyncio
async def test_fetch_settings():
    page = await make_client(FakePanel()).fetch_settings("10.0.0.5")
    assert page.name == "Living Room"


@pytest.mark.asyncio
async def test_fetch_settings_failure_returns_none():
    assert await make_client(FakePanel(get_status=404)).fetch_settings("10.0.0.5") is None
    assert await make_client(FakePanel(timeout=True)).fetch_settings("10.0.0.5") is None


@pytest.mark.asyncio
async def test_logging_on_keeps_other_fields():
    panel = FakePanel()
    result = await make_client(panel).apply_settings("10.0.0.5", SettingsOperation.LOGGING_ON)

    assert panel.posted == {"hostn": "Living Room", "file_logging": "1", "long_press_duration": "800"}
    assert result.logging is True
    assert result.long_press_ms == 800


@pytest.mark.asyncio
async def test_long_press_update():
    panel = FakePanel()
    result = await make_client(panel).apply_settings("10.0.0.5", SettingsOperation.LONG_PRESS, 1500)

    assert panel.posted["long_press_duration"] == "1500"
    assert panel.posted["file_logging"] == "0"
    assert result.long_press_ms == 1500


@pytest.mark.asyncio
async def test_long_press_below_minimum_is_ignored():
    panel = FakePanel()
    result = await make_client(panel).apply_settings("10.0.0.5", SettingsOperation.LONG_PRESS, 50)
    assert result.long_press_ms == 800


@pytest.mark.asyncio
async def test_fetch_error_raises():
    panel = FakePanel(get_status=500)
    with pytest.raises(PanelHttpError) as exc:
        await make_client(panel).apply_settings("10.0.0.5", SettingsOperation.LOGGING_OFF)
    assert exc.value.status_code == 500
    assert panel.posted is None


@pytest.mark.asyncio
async def test_save_error_raises():
    with pytest.raises(PanelHttpError):
        await make_client(FakePanel(post_status=500)).apply_settings("10.0.0.5", SettingsOperation.LOGGING_OFF)


@pytest.mark.asyncio
async def test_timeout_raises_timeout_error():
    with pytest.raises(TimeoutError):
        await make_client(FakePanel(timeout=True)).apply_settings("10.0.0.5", SettingsOperation.LOGGING_ON)


@pytest.mark.asyncio
async def test_rename_label_posts_json():
    panel = FakePanel()
    reply = await make_client(panel).rename_label("10.0.0.5", LabelTarget.CURTAIN, 1, "Bedroom blind")

    assert panel.labeled == {"type": "curtain", "index": 1, "name": "Bedroom blind"}
    assert reply == {"ok": True}


@pytest.mark.asyncio
async def test_rename_label_tolerates_empty_reply():
    reply = await make_client(FakePanel(label_reply="")).rename_label("10.0.0.5", LabelTarget.RELAY, 0, "")
    assert reply == {}


@pytest.mark.asyncio
async def test_rename_label_errors():
    with pytest.raises(PanelHttpError) as exc:
        await make_client(FakePanel(label_status=500)).rename_label("10.0.0.5", LabelTarget.SCENE, 2, "Movie")
    assert exc.value.status_code == 500

    with pytest.raises(TimeoutError):
        await make_client(FakePanel(timeout=True)).rename_label("10.0.0.5", LabelTarget.SCENE, 2, "Movie")
