"""Shared FastAPI dependencies and helpers for dashboard routes."""

from __future__ import annotations

from fastapi import HTTPException, Request, WebSocket

from virtbot.core.exceptions import ErrorCode
from virtbot.manager.results import ManagerResult
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.providers.models import PanelConfig
from virtbot.storage import panels as panel_store

_STATUS_BY_CODE = {
    ErrorCode.VM_NOT_FOUND.value: 404,
    ErrorCode.RESOURCE_NOT_FOUND.value: 404,
    ErrorCode.VALIDATION_FAILED.value: 400,
    ErrorCode.UNSUPPORTED_PROVIDER.value: 400,
    ErrorCode.AUTHENTICATION_FAILED.value: 502,
    ErrorCode.CONNECTION_FAILED.value: 502,
}


def get_manager(request: Request) -> VirtualizationManager:
    return request.app.state.manager


def get_ws_manager(websocket: WebSocket) -> VirtualizationManager:
    return websocket.app.state.manager


def raise_for_result(result: ManagerResult, framing: str) -> None:
    """Turn a failed manager result into an ``HTTPException`` carrying the error verbatim."""
    if result.success:
        return
    status_code = _STATUS_BY_CODE.get(result.error_code or "", 500)
    raise HTTPException(
        status_code=status_code,
        detail={"message": framing, "error": result.error, "errorCode": result.error_code},
    )


def require_panel_access(panel_id: int, guild_id: str) -> PanelConfig:
    """Return the panel if it belongs to ``guild_id``; otherwise 403."""
    panel = panel_store.get_panel(panel_id)
    if panel is None or panel.guild_id != guild_id:
        raise HTTPException(status_code=403, detail="Access to the specified panel is forbidden")
    return panel


__all__ = ["get_manager", "get_ws_manager", "raise_for_result", "require_panel_access"]
