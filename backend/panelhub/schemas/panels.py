"""Panel control schemas."""

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field

from panelhub.schemas.common import CamelModel
from panelhub.services.panel_http import LabelTarget, SettingsOperation


class PanelCommandRequest(CamelModel):
    """Command for one or more panels. ``"*"`` or an empty list targets every connected panel."""
    ips: list[str] | Literal["*"] | None = None
    command: str
    index: int | None = None
    state: bool | None = None
    action: str | None = None


class CommandResult(CamelModel):
    ip: str
    success: bool


class PanelCommandResponse(CamelModel):
    results: list[CommandResult]
    total_sent: int
    success_count: int


class PanelSettingsRequest(CamelModel):
    ip: str
    operation: SettingsOperation
    long_press_ms: int | None = None


class PanelSettingsResponse(CamelModel):
    success: bool = True
    ip: str
    operation: SettingsOperation
    settings: dict


class PanelRenameRequest(CamelModel):
    ip: str
    type: LabelTarget
    index: int = Field(ge=0)
    name: str


class PanelRenameResponse(CamelModel):
    success: bool = True
    ip: str
    type: LabelTarget
    index: int
    name: str
    panel_response: dict


class PanelResetResponse(CamelModel):
    success: bool = True
    message: str


class CachedPanelOut(CamelModel):
    """Last-known identity of a panel."""
    model_config = ConfigDict(from_attributes=True)

    ip: str
    name: str | None = None
    firmware_version: str | None = None
    device_id: str | None = None
    first_seen: datetime
    last_seen: datetime
    discovery_count: int = 1
    logging_enabled: bool | None = None
    long_press_ms: int | None = None
