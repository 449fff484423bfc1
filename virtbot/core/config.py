"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from virtbot.providers.models import PanelSettings

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "virtbot.yaml"


class MonitorSettings(BaseModel):
    interval_ms: int = Field(default=5000, gt=0)


class PanelPolicy(BaseModel):
    max_per_guild: int = 10
    allowed_types: List[str] = Field(default_factory=lambda: ["proxmox"])
    name_max_length: int = 50
    require_https: bool = False


class DiscordSettings(BaseModel):
    sync_guild_id: Optional[int] = None


class DashboardSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3001


class AppConfig(BaseModel):
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    panels: PanelPolicy = Field(default_factory=PanelPolicy)
    provider_defaults: PanelSettings = Field(default_factory=PanelSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    dashboard: DashboardSettings = Field(default_factory=DashboardSettings)

    @property
    def is_production(self) -> bool:
        return os.getenv("VIRTBOT_ENV", "development").lower() == "production"

    @property
    def https_required(self) -> bool:
        return self.panels.require_https or self.is_production


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load configuration from YAML, falling back to defaults when no file exists."""
    env_path = os.getenv("VIRTBOT_CONFIG")
    config_path = path or (pathlib.Path(env_path) if env_path else DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        return AppConfig()
    raw = yaml.safe_load(config_path.read_text()) or {}
    return AppConfig(**raw)
