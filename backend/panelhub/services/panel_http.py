"""Panel settings page — scrape identity/config and write settings back."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

import httpx

from panelhub.config import settings
from panelhub.services.panel_state import PairMode, PanelSettings, RelayMode, RelayPairConfig

logger = logging.getLogger(__name__)

_HOSTNAME = re.compile(r"""id=["']hostn["'][^>]*value=["']([^"']*)["']""", re.IGNORECASE)
_LONG_PRESS = re.compile(r"""id=["']long_press_duration["'][^>]*value=["'](\d+)["']""", re.IGNORECASE)
_SELECTED_OPTION = re.compile(
    r"""<option[^>]*value=["']([^"']*)["'][^>]*\bselected\b""", re.IGNORECASE
)
_PAIR_MODE_SELECT = re.compile(
    r"""<select[^>]*id=["']pair_mode_(\d+)["'][^>]*>(.*?)</select>""", re.IGNORECASE | re.DOTALL
)

# Firmware encodes select options by position
_PAIR_MODE_ORDER = (PairMode.NORMAL, PairMode.CURTAIN, PairMode.VENETIAN, PairMode.LINKED)
_RELAY_MODE_ORDER = (RelayMode.SWITCH, RelayMode.MOMENTARY, RelayMode.DISABLED)

MIN_LONG_PRESS_MS = 100
DEFAULT_LONG_PRESS_MS = 1000


def _select_block(html: str, select_id: str) -> str | None:
    pattern = re.compile(
        rf"""<select[^>]*id=["']{re.escape(select_id)}["'][^>]*>(.*?)</select>""",
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(html)
    return match.group(1) if match else None


def _selected_value(block: str | None) -> str | None:
    if block is None:
        return None
    match = _SELECTED_OPTION.search(block)
    return match.group(1).strip() if match else None


def _enum_option(value: str | None, order: tuple, enum_cls: type[Enum]):
    if value is None:
        return None
    if value.isdigit():
        index = int(value)
        return order[index] if index < len(order) else None
    try:
        return enum_cls(value.lower())
    except ValueError:
        return None


def _parse_relay_pairs(html: str) -> list[RelayPairConfig] | None:
    pairs: list[RelayPairConfig] = []
    for match in _PAIR_MODE_SELECT.finditer(html):
        pair_index = int(match.group(1))
        pair_mode = _enum_option(_selected_value(match.group(2)), _PAIR_MODE_ORDER, PairMode)
        modes = []
        for slot in (0, 1):
            block = _select_block(html, f"relay_mode_{pair_index}_{slot}")
            mode = _enum_option(_selected_value(block), _RELAY_MODE_ORDER, RelayMode)
            modes.append(mode or RelayMode.SWITCH)
        pairs.append(
            RelayPairConfig(
                pair_index=pair_index,
                pair_mode=pair_mode or PairMode.NORMAL,
                relay_modes=(modes[0], modes[1]),
            )
        )
    if not pairs:
        return None
    return sorted(pairs, key=lambda p: p.pair_index)


@dataclass
class SettingsPage:
    """What the ``/settings`` page tells us about a panel."""

    hostname: str | None = None
    settings: PanelSettings = field(default_factory=PanelSettings)

    @property
    def name(self) -> str | None:
        return self.hostname.strip() or None if self.hostname else None


def parse_settings_page(html: str) -> SettingsPage:
    """Extract hostname, logging, long-press and relay pairs. Missing fields stay ``None``."""
    hostname_match = _HOSTNAME.search(html)
    hostname = hostname_match.group(1) if hostname_match else None

    logging_value = _selected_value(_select_block(html, "file_logging"))
    logging_enabled = {"1": True, "0": False}.get(logging_value or "")

    long_press_match = _LONG_PRESS.search(html)
    long_press_ms = int(long_press_match.group(1)) if long_press_match else None

    return SettingsPage(
        hostname=hostname,
        settings=PanelSettings(
            logging=logging_enabled,
            long_press_ms=long_press_ms,
            relay_pairs=_parse_relay_pairs(html),
        ),
    )


class SettingsOperation(str, Enum):
    LOGGING_ON = "set-logging-on"
    LOGGING_OFF = "set-logging-off"
    LONG_PRESS = "set-longpress"


class LabelTarget(str, Enum):
    RELAY = "relay"
    CURTAIN = "curtain"
    CONTACT = "contact"
    SCENE = "scene"


class PanelHttpError(ConnectionError):
    """Panel answered with a non-success HTTP status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PanelHttpClient:
    """HTTP access to a panel's settings page and label API."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self, timeout_ms: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_ms / 1000, transport=self._transport)

    async def fetch_settings(self, ip: str, timeout_ms: int | None = None) -> SettingsPage | None:
        """Best-effort scrape of ``/settings``. Returns ``None`` on any failure."""
        timeout_ms = timeout_ms or settings.panel_settings_timeout_ms
        try:
            async with self._client(timeout_ms) as client:
                resp = await client.get(f"http://{ip}/settings", headers={"Cache-Control": "no-store"})
        except httpx.HTTPError as e:
            logger.debug("[Settings] %s: fetch failed: %s", ip, e)
            return None
        if resp.status_code != 200:
            logger.debug("[Settings] %s: HTTP %d", ip, resp.status_code)
            return None
        return parse_settings_page(resp.text)

    async def apply_settings(
        self,
        ip: str,
        operation: SettingsOperation,
        long_press_ms: int | None = None,
    ) -> PanelSettings:
        """Read the current page, change one value, POST the form back.

        Raises ``TimeoutError`` when the panel does not answer in time and
        :class:`PanelHttpError` for non-success responses.
        """
        try:
            async with self._client(settings.panel_settings_timeout_ms) as client:
                resp = await client.get(f"http://{ip}/settings", headers={"Cache-Control": "no-store"})
                if resp.status_code != 200:
                    raise PanelHttpError(
                        f"Failed to fetch current settings: HTTP {resp.status_code}", resp.status_code
                    )

                current = parse_settings_page(resp.text)
                new_logging = bool(current.settings.logging)
                new_long_press = current.settings.long_press_ms or DEFAULT_LONG_PRESS_MS

                if operation == SettingsOperation.LOGGING_ON:
                    new_logging = True
                elif operation == SettingsOperation.LOGGING_OFF:
                    new_logging = False
                elif operation == SettingsOperation.LONG_PRESS:
                    if long_press_ms is not None and long_press_ms >= MIN_LONG_PRESS_MS:
                        new_long_press = long_press_ms

                form = {
                    "hostn": current.hostname or "",
                    "file_logging": "1" if new_logging else "0",
                    "long_press_duration": str(new_long_press),
                }
                post = await client.post(f"http://{ip}/savesettings", data=form)
                if post.status_code >= 400:
                    raise PanelHttpError(f"Failed to save settings: HTTP {post.status_code}", post.status_code)
        except httpx.TimeoutException as e:
            raise TimeoutError("Request timed out") from e
        except httpx.HTTPError as e:
            raise PanelHttpError(str(e) or e.__class__.__name__) from e

        logger.info("[Settings] %s: applied %s", ip, operation.value)
        return PanelSettings(logging=new_logging, long_press_ms=new_long_press)

    async def rename_label(self, ip: str, target: LabelTarget, index: int, name: str) -> dict:
        """Rename a relay, curtain, contact or scene through ``/api/device-label``.

        Returns the panel's JSON reply (empty when it sends none).
        """
        body = {"type": target.value, "index": index, "name": name}
        try:
            async with self._client(settings.panel_label_timeout_ms) as client:
                resp = await client.post(f"http://{ip}/api/device-label", json=body)
        except httpx.TimeoutException as e:
            raise TimeoutError("Request timed out") from e
        except httpx.HTTPError as e:
            raise PanelHttpError(str(e) or e.__class__.__name__) from e

        if resp.status_code >= 400:
            logger.error("[Rename] %s returned %d: %.200s", ip, resp.status_code, resp.text)
            raise PanelHttpError(f"Panel returned {resp.status_code}", resp.status_code)

        logger.info("[Rename] %s: %s %d -> %r", ip, target.value, index, name)
        try:
            reply = resp.json()
        except ValueError:
            return {}
        return reply if isinstance(reply, dict) else {}
