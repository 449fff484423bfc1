"""Panel registration rules shared by the dashboard and the bot."""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit

from virtbot.core.config import AppConfig
from virtbot.core.exceptions import ValidationFailedError
from virtbot.storage import panels as panel_store


class PanelConflictError(ValidationFailedError):
    """Another panel in the guild already uses the requested name."""


def validate_panel_name(name: str, config: AppConfig) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationFailedError("Panel name is required")
    limit = config.panels.name_max_length
    if len(name) > limit:
        raise ValidationFailedError(f"Panel name must be at most {limit} characters")
    return name


def validate_provider_type(provider_type: str, config: AppConfig, available: Iterable[str]) -> None:
    if provider_type not in config.panels.allowed_types or provider_type not in set(available):
        raise ValidationFailedError(f"Unsupported provider type: {provider_type}")


def validate_api_url(api_url: str, config: AppConfig) -> str:
    """Return the normalized URL; https is enforced in production or when configured."""
    api_url = (api_url or "").strip()
    parts = urlsplit(api_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationFailedError("API URL must be an http(s) URL")
    if config.https_required and parts.scheme != "https":
        raise ValidationFailedError("API URL must use HTTPS")
    return api_url.rstrip("/")


def ensure_unique_name(guild_id: str, name: str, exclude_id: int | None = None) -> None:
    existing = panel_store.find_panel_by_name(guild_id, name)
    if existing is not None and existing.id != exclude_id:
        raise PanelConflictError(f"A panel named '{name}' already exists")


def ensure_capacity(guild_id: str, config: AppConfig) -> None:
    limit = config.panels.max_per_guild
    if panel_store.count_panels(guild_id) >= limit:
        raise ValidationFailedError(f"Maximum of {limit} panels per server reached")


__all__ = [
    "PanelConflictError",
    "ensure_capacity",
    "ensure_unique_name",
    "validate_api_url",
    "validate_panel_name",
    "validate_provider_type",
]
