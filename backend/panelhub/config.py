"""PanelHub configuration — Pydantic BaseSettings loaded from .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "PanelHub"
    debug: bool = False
    log_level: str = "INFO"

    # Network
    host: str = "0.0.0.0"
    port: int = 3000
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Storage paths (relative resolved from backend/ at runtime)
    data_dir: str = "./data"
    database_path: str = "./data/panelhub.db"

    # Discovery
    panel_signature: str = "cubixx"
    discovery_settings_timeout_ms: int = 2500
    discovery_probe_stagger_ms: int = 5
    discovery_enrichment_grace_per_fetch_ms: int = 500
    discovery_enrichment_grace_min_ms: int = 1000
    discovery_enrichment_grace_max_ms: int = 5000

    # Panel websocket link
    panel_ws_port: int = 81
    panel_connect_timeout_ms: int = 3000
    panel_reconnect_delay_ms: int = 1000  # fixed, panels come back quickly
    panel_ping_interval_ms: int = 30000

    # Panel HTTP (settings page, label API)
    panel_settings_timeout_ms: int = 3000
    panel_label_timeout_ms: int = 5000

    # Registry
    registry_heartbeat_seconds: int = 15

    # Smart action executor
    action_delay_tick_ms: int = 100
    action_curtain_settle_ms: int = 1000
    action_curtain_poll_ms: int = 500
    action_curtain_max_wait_ms: int = 300_000  # 5 minutes
    action_stop_curtains_timeout_ms: int = 2000
    action_completed_retention_seconds: int = 30
    action_stopped_retention_seconds: int = 5
    action_prune_interval_seconds: int = 5

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_prefix="PANELHUB_",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, str) and not value.startswith("["):
            return [o.strip() for o in value.split(",") if o.strip()]
        if isinstance(value, list):
            return value
        return ["http://localhost:3000"]

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Ensure data paths are absolute."""
        base = Path(__file__).resolve().parent.parent  # backend/
        for field in ("data_dir", "database_path"):
            val = getattr(self, field)
            if not Path(val).is_absolute():
                setattr(self, field, str(base / val))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
