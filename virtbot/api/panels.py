"""Dashboard endpoints for managing virtualization panels."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from virtbot.core.config import load_config
from virtbot.core.exceptions import ValidationFailedError
from virtbot.manager import policy
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.providers.models import PanelConfig, PanelSettings, parse_credentials
from virtbot.storage import monitors as monitor_store
from virtbot.storage import panels as panel_store

from .deps import get_manager, raise_for_result

logger = logging.getLogger("virtbot.api.panels")

router = APIRouter(prefix="/api/vm/panels", tags=["panels"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PanelCreate(_CamelModel):
    guild_id: str = Field(alias="guildId")
    name: str
    type: str = "proxmox"
    api_url: str = Field(alias="apiUrl")
    credentials: dict[str, Any]
    is_default: bool = Field(default=False, alias="isDefault")
    config: Optional[PanelSettings] = None


class PanelUpdate(_CamelModel):
    guild_id: str = Field(alias="guildId")
    name: Optional[str] = None
    api_url: Optional[str] = Field(default=None, alias="apiUrl")
    credentials: Optional[dict[str, Any]] = None
    is_default: Optional[bool] = Field(default=None, alias="isDefault")
    active: Optional[bool] = None
    config: Optional[PanelSettings] = None


class PanelTest(_CamelModel):
    type: str = "proxmox"
    api_url: str = Field(alias="apiUrl")
    credentials: dict[str, Any]


def _policy_error(exc: ValidationFailedError) -> HTTPException:
    status_code = 409 if isinstance(exc, policy.PanelConflictError) else 400
    return HTTPException(status_code=status_code, detail=exc.message)


def _parse_credentials(raw: dict[str, Any]) -> Any:
    try:
        return parse_credentials(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid credentials: {exc.errors()[0]['msg']}"
        ) from exc


def _owned_panel_or_404(panel_id: int, guild_id: str) -> PanelConfig:
    panel = panel_store.get_panel(panel_id)
    if panel is None or panel.guild_id != guild_id:
        raise HTTPException(status_code=404, detail="Panel not found")
    return panel


@router.get("")
async def list_panels(
    guild_id: str = Query(alias="guildid"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    result = await manager.get_panels_by_guild(guild_id)
    raise_for_result(result, "Failed to list panels")
    return {"success": True, "data": [panel.public_view() for panel in result.data]}


@router.post("", status_code=201)
async def create_panel(
    payload: PanelCreate,
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    config = load_config()
    try:
        name = policy.validate_panel_name(payload.name, config)
        policy.validate_provider_type(payload.type, config, manager.available_providers())
        api_url = policy.validate_api_url(payload.api_url, config)
        credentials = _parse_credentials(payload.credentials)
        policy.ensure_capacity(payload.guild_id, config)
        policy.ensure_unique_name(payload.guild_id, name)
    except ValidationFailedError as exc:
        raise _policy_error(exc) from exc

    result = await manager.add_panel(
        payload.guild_id,
        name,
        payload.type,
        api_url,
        credentials,
        is_default=payload.is_default,
        config=payload.config,
    )
    if not result.success:
        raise HTTPException(
            status_code=400,
            detail={"message": "Failed to create panel", "error": result.error, "errorCode": result.error_code},
        )
    return {"success": True, "data": result.data.public_view()}


@router.post("/test")
async def test_panel(
    payload: PanelTest,
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    config = load_config()
    try:
        policy.validate_provider_type(payload.type, config, manager.available_providers())
        api_url = policy.validate_api_url(payload.api_url, config)
    except ValidationFailedError as exc:
        raise _policy_error(exc) from exc
    credentials = _parse_credentials(payload.credentials)

    result = await manager.validate_panel_credentials(payload.type, api_url, credentials)
    raise_for_result(result, "Connection test failed")
    return {"success": True, "data": {"connected": result.data}}


@router.patch("/{panel_id}")
async def update_panel(
    panel_id: int,
    payload: PanelUpdate,
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    config = load_config()
    panel = _owned_panel_or_404(panel_id, payload.guild_id)

    name = api_url = credentials = None
    try:
        if payload.name is not None:
            name = policy.validate_panel_name(payload.name, config)
            policy.ensure_unique_name(payload.guild_id, name, exclude_id=panel_id)
        if payload.api_url is not None:
            api_url = policy.validate_api_url(payload.api_url, config)
    except ValidationFailedError as exc:
        raise _policy_error(exc) from exc
    if payload.credentials is not None:
        credentials = _parse_credentials(payload.credentials)

    if any(value is not None for value in (name, api_url, credentials, payload.is_default, payload.config)):
        result = await manager.update_panel(
            panel_id,
            name=name,
            api_url=api_url,
            credentials=credentials,
            config=payload.config,
            is_default=payload.is_default,
        )
        raise_for_result(result, "Failed to update panel")
        panel = result.data

    if payload.active is not None and payload.active != panel.active:
        toggled = await manager.toggle_panel_status(panel_id, payload.active)
        raise_for_result(toggled, "Failed to update panel status")
        panel = toggled.data

    return {"success": True, "data": panel.public_view()}


@router.delete("/{panel_id}")
async def delete_panel(
    panel_id: int,
    guild_id: str = Query(alias="guildid"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    _owned_panel_or_404(panel_id, guild_id)

    monitors = monitor_store.count_by_panel(panel_id)
    if monitors > 0:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete panel: {monitors} VM monitor(s) are still active",
        )

    result = await manager.remove_panel(panel_id)
    raise_for_result(result, "Failed to delete panel")
    logger.info("Panel deleted from dashboard", extra={"panel_id": panel_id, "guild_id": guild_id})
    return {"success": True}
