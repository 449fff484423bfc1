"""Dashboard endpoints for VM listing, power actions, metrics and consoles."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Query, WebSocket
from pydantic import BaseModel, ConfigDict, Field

from virtbot.manager.listing import collect_vms
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.providers.models import TIMEFRAMES, VMAction
from virtbot.telemetry.events import list_recent_events

from .deps import get_manager, get_ws_manager, raise_for_result, require_panel_access
from .vnc_proxy import VNCRelay, is_console_url

logger = logging.getLogger("virtbot.api.vm")

router = APIRouter(prefix="/api/vm", tags=["vm"])

DashboardAction = Literal["start", "stop", "restart", "pause", "resume", "reset"]
NET_SCALE = 1024


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: DashboardAction
    vm_id: str = Field(alias="vmId", min_length=1)
    guild_id: str = Field(alias="guildId")
    panel_id: int = Field(alias="panelId")


@router.get("/list")
async def list_vms(
    guild_id: str = Query(alias="guildid"),
    panel_id: int | None = Query(default=None, alias="panel"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    if panel_id is not None:
        require_panel_access(panel_id, guild_id)
    result = await collect_vms(manager, guild_id, panel_id)
    raise_for_result(result, "Failed to list VMs")
    return result.to_dict()


@router.get("/status")
async def vm_status(
    panel_id: int = Query(alias="panel"),
    vm_id: str = Query(alias="id"),
    guild_id: str = Query(alias="guildid"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    require_panel_access(panel_id, guild_id)
    result = await manager.get_vm(panel_id, vm_id)
    raise_for_result(result, "Failed to get VM status")
    return result.to_dict()


@router.post("/action")
async def vm_action(
    payload: ActionRequest,
    x_user_id: str | None = Header(default=None),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    require_panel_access(payload.panel_id, payload.guild_id)
    action = VMAction(type=payload.action, vm_id=payload.vm_id)
    result = await manager.execute_vm_action(
        payload.panel_id, action, x_user_id or "dashboard", guild_id=payload.guild_id
    )
    raise_for_result(result, f"Failed to {payload.action} VM")
    return result.to_dict()


@router.get("/rrddata")
async def vm_rrddata(
    panel_id: int = Query(alias="panel"),
    vm_id: str = Query(alias="id"),
    guild_id: str = Query(alias="guildid"),
    timeframe: str = Query(default="day"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    if timeframe not in TIMEFRAMES:
        raise HTTPException(status_code=400, detail=f"Invalid timeframe: {timeframe}")
    require_panel_access(panel_id, guild_id)
    result = await manager.get_vm_history(panel_id, vm_id, timeframe)
    raise_for_result(result, "Failed to get VM history")

    points = []
    for point in result.data:
        row = point.model_dump()
        if row["cpu"] is not None:
            row["cpu"] = row["cpu"] * 100
        for key in ("netin", "netout"):
            if row[key] is not None:
                row[key] = row[key] * NET_SCALE
        points.append(row)
    return {"success": True, "data": points}


@router.get("/novnc")
async def vm_novnc(
    panel_id: int = Query(alias="panel"),
    vm_id: str = Query(alias="id"),
    guild_id: str = Query(alias="guildid"),
    manager: VirtualizationManager = Depends(get_manager),
) -> dict:
    require_panel_access(panel_id, guild_id)
    result = await manager.get_novnc_url(panel_id, vm_id)
    raise_for_result(result, "Failed to get console")
    return result.to_dict()


@router.get("/events")
async def vm_events(
    guild_id: str = Query(alias="guildid"),
    limit: int = Query(default=50, ge=1, le=500),
) -> dict:
    return {"success": True, "data": list_recent_events(limit=limit, guild_id=guild_id)}


@router.websocket("/vnc-proxy")
async def vnc_proxy(
    websocket: WebSocket,
    websocket_url: str = Query(alias="websocketUrl"),
    panel_id: int = Query(alias="panelId"),
    guild_id: str = Query(alias="guildId"),
    manager: VirtualizationManager = Depends(get_ws_manager),
) -> None:
    try:
        panel = require_panel_access(panel_id, guild_id)
    except HTTPException:
        await websocket.close(code=1008, reason="Forbidden")
        return

    if not is_console_url(websocket_url, panel.api_url):
        logger.warning(
            "Refused console proxy to a foreign host",
            extra={"event": "vnc_url_rejected", "panel_id": panel_id, "guild_id": guild_id},
        )
        await websocket.close(code=1008, reason="Invalid console URL")
        return

    headers = await manager.get_panel_auth_headers(panel_id)
    if not headers.success:
        logger.warning(
            "Console proxy could not authenticate: %s",
            headers.error,
            extra={"panel_id": panel_id, "error_code": headers.error_code},
        )
        await websocket.close(code=1011, reason="Panel unavailable")
        return

    relay = VNCRelay(
        websocket,
        websocket_url,
        headers.data,
        verify_ssl=manager.effective_settings(panel).verify_ssl,
    )
    await relay.run()
