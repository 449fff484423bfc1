"""Orchestration between callers and hypervisor providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from virtbot.core.config import AppConfig, load_config
from virtbot.core.exceptions import ErrorCode, UnsupportedProviderError, VirtualizationError
from virtbot.providers.base import VirtualizationProvider
from virtbot.providers.models import (
    NoVNCDescriptor,
    PanelConfig,
    PanelSettings,
    RRDDataPoint,
    SystemInfo,
    VMAction,
    VMActionResult,
    VMSpecs,
    VMStatus,
    merge_settings,
    parse_credentials,
)
from virtbot.providers.registry import ProviderRegistry, default_registry
from virtbot.storage import panels as panel_store
from virtbot.telemetry.events import record_event

from .results import ManagerResult

logger = logging.getLogger("virtbot.manager")

T = TypeVar("T")

DUPLICATE_NAME_MESSAGE = "Panel name already exists"
SAVE_FAILED_MESSAGE = "Failed to save panel"


class VirtualizationManager:
    """Single entry point for panel and VM operations.

    Owns the panel id -> provider connection cache. Every public coroutine returns a
    :class:`ManagerResult`; expected failures never escape as exceptions.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self._registry = (registry or default_registry()).copy()
        self._config = config or load_config()
        self._connections: dict[int, VirtualizationProvider] = {}
        self._connect_locks: dict[int, asyncio.Lock] = {}
        logger.info(
            "Initialized %s virtualization providers",
            len(self._registry.types()),
            extra={"providers": self._registry.types()},
        )

    # Panels ----------------------------------------------------------------

    def available_providers(self) -> list[str]:
        return self._registry.types()

    async def get_panels_by_guild(self, guild_id: str) -> ManagerResult[list[PanelConfig]]:
        try:
            panels = panel_store.list_panels_by_guild(guild_id)
        except Exception as exc:
            logger.exception("Failed to get panels for guild", extra={"guild_id": guild_id})
            return ManagerResult.fail(str(exc), ErrorCode.UNKNOWN_ERROR)
        return ManagerResult.ok(panels)

    async def get_panel(self, panel_id: int) -> ManagerResult[PanelConfig]:
        try:
            panel = panel_store.get_panel(panel_id)
        except Exception as exc:
            logger.exception("Failed to get panel", extra={"panel_id": panel_id})
            return ManagerResult.fail(str(exc), ErrorCode.UNKNOWN_ERROR)
        if panel is None:
            return ManagerResult.fail("Panel not found", ErrorCode.RESOURCE_NOT_FOUND)
        return ManagerResult.ok(panel, provider=panel.type)

    async def validate_panel_credentials(
        self, provider_type: str, api_url: str, credentials: Any
    ) -> ManagerResult[bool]:
        """Connect a throwaway provider and report whether it authenticated."""
        try:
            credentials = _coerce_credentials(credentials)
            provider = self._registry.create(provider_type)
        except UnsupportedProviderError as exc:
            return ManagerResult.fail(exc.message, exc.code)
        except ValidationError as exc:
            return ManagerResult.fail(f"Invalid credentials: {exc}", ErrorCode.VALIDATION_FAILED)

        try:
            connected = await provider.connect(api_url, credentials, self._config.provider_defaults)
        except VirtualizationError as exc:
            logger.warning(
                "Credential validation failed: %s",
                exc.message,
                extra={"provider": provider_type, "api_url": api_url, "error_code": exc.code.value},
            )
            return ManagerResult.fail(exc.message, exc.code, provider=provider_type)
        finally:
            await self._safe_disconnect(None, provider)
        return ManagerResult.ok(connected, provider=provider_type)

    async def add_panel(
        self,
        guild_id: str,
        name: str,
        provider_type: str,
        api_url: str,
        credentials: Any,
        is_default: bool = False,
        config: PanelSettings | None = None,
    ) -> ManagerResult[PanelConfig]:
        if provider_type not in self._registry:
            return ManagerResult.fail(
                UnsupportedProviderError(provider_type).message, ErrorCode.UNSUPPORTED_PROVIDER
            )

        validation = await self.validate_panel_credentials(provider_type, api_url, credentials)
        if not validation.success or not validation.data:
            reason = validation.error or "connection test failed"
            return ManagerResult.fail(
                f"Invalid credentials or unable to connect to panel: {reason}",
                validation.error_code or ErrorCode.AUTHENTICATION_FAILED,
                provider=provider_type,
            )

        try:
            panel = panel_store.create_panel(
                guild_id=guild_id,
                name=name,
                type=provider_type,
                api_url=api_url,
                credentials=_coerce_credentials(credentials),
                config=config,
                is_default=is_default,
            )
        except IntegrityError:
            logger.warning(
                "Panel name already exists",
                extra={"guild_id": guild_id, "panel_name": name, "provider": provider_type},
            )
            return ManagerResult.fail(
                DUPLICATE_NAME_MESSAGE, ErrorCode.VALIDATION_FAILED, provider=provider_type
            )
        except Exception as exc:
            logger.exception(
                "Failed to add panel",
                extra={"guild_id": guild_id, "panel_name": name, "provider": provider_type},
            )
            return ManagerResult.fail(SAVE_FAILED_MESSAGE, ErrorCode.UNKNOWN_ERROR, provider=provider_type)

        logger.info(
            "Added virtualization panel %s",
            name,
            extra={"event": "panel_created", "guild_id": guild_id, "panel_id": panel.id},
        )
        record_event(
            "panel_created",
            "INFO",
            message=f"Panel {name} added",
            guild_id=guild_id,
            panel_id=panel.id,
            meta={"type": provider_type, "api_url": api_url},
        )

        warmed = await self.connect_to_panel(panel.id)
        if not warmed.success:
            logger.warning(
                "New panel did not connect: %s",
                warmed.error,
                extra={"panel_id": panel.id},
            )
        return ManagerResult.ok(panel, provider=provider_type)

    async def update_panel(
        self,
        panel_id: int,
        *,
        name: str | None = None,
        api_url: str | None = None,
        credentials: Any = None,
        config: PanelSettings | None = None,
        is_default: bool | None = None,
    ) -> ManagerResult[PanelConfig]:
        existing = await self.get_panel(panel_id)
        if not existing.success:
            return existing
        panel = existing.data

        try:
            if credentials is not None:
                credentials = _coerce_credentials(credentials)
        except ValidationError as exc:
            return ManagerResult.fail(f"Invalid credentials: {exc}", ErrorCode.VALIDATION_FAILED)

        if api_url is not None or credentials is not None:
            validation = await self.validate_panel_credentials(
                panel.type,
                api_url or panel.api_url,
                credentials or panel.credentials,
            )
            if not validation.success or not validation.data:
                reason = validation.error or "connection test failed"
                return ManagerResult.fail(
                    f"Invalid credentials or unable to connect to panel: {reason}",
                    validation.error_code or ErrorCode.AUTHENTICATION_FAILED,
                    provider=panel.type,
                )

        changes: dict[str, Any] = {
            "name": name,
            "api_url": api_url,
            "credentials": credentials,
            "is_default": is_default,
        }
        if config is not None:
            changes["config"] = config
        try:
            updated = panel_store.update_panel(panel_id, **changes)
        except IntegrityError:
            logger.warning("Panel name already exists", extra={"panel_id": panel_id, "panel_name": name})
            return ManagerResult.fail(
                DUPLICATE_NAME_MESSAGE, ErrorCode.VALIDATION_FAILED, provider=panel.type
            )
        except Exception as exc:
            logger.exception("Failed to update panel", extra={"panel_id": panel_id})
            return ManagerResult.fail(SAVE_FAILED_MESSAGE, ErrorCode.UNKNOWN_ERROR, provider=panel.type)
        if updated is None:
            return ManagerResult.fail("Panel not found", ErrorCode.RESOURCE_NOT_FOUND)

        await self.disconnect_panel(panel_id)
        record_event(
            "panel_updated",
            "INFO",
            message=f"Panel {updated.name} updated",
            guild_id=updated.guild_id,
            panel_id=panel_id,
            meta={"fields": sorted(key for key, value in changes.items() if value is not None)},
        )
        return ManagerResult.ok(updated, provider=updated.type)

    async def toggle_panel_status(
        self, panel_id: int, active: bool | None = None
    ) -> ManagerResult[PanelConfig]:
        """Set ``active`` (or flip it when omitted); deactivation drops the cached connection."""
        existing = await self.get_panel(panel_id)
        if not existing.success:
            return existing
        target = (not existing.data.active) if active is None else active

        try:
            panel_store.set_panel_active(panel_id, target)
            updated = panel_store.get_panel(panel_id)
        except Exception as exc:
            logger.exception("Failed to toggle panel", extra={"panel_id": panel_id})
            return ManagerResult.fail(str(exc), ErrorCode.UNKNOWN_ERROR)
        if updated is None:
            return ManagerResult.fail("Panel not found", ErrorCode.RESOURCE_NOT_FOUND)

        if not target:
            await self.disconnect_panel(panel_id)
        logger.info(
            "Panel %s %s",
            panel_id,
            "enabled" if target else "disabled",
            extra={"event": "panel_toggled", "panel_id": panel_id},
        )
        return ManagerResult.ok(updated, provider=updated.type)

    async def remove_panel(self, panel_id: int) -> ManagerResult[bool]:
        """Delete a panel. Callers must check for live monitors first."""
        await self.disconnect_panel(panel_id)
        try:
            panel = panel_store.get_panel(panel_id)
            deleted = panel_store.delete_panel(panel_id)
        except Exception as exc:
            logger.exception("Failed to remove panel", extra={"panel_id": panel_id})
            return ManagerResult.fail(str(exc), ErrorCode.UNKNOWN_ERROR)
        if not deleted:
            return ManagerResult.fail("Panel not found", ErrorCode.RESOURCE_NOT_FOUND)

        self._connect_locks.pop(panel_id, None)
        logger.info("Removed virtualization panel", extra={"event": "panel_removed", "panel_id": panel_id})
        record_event(
            "panel_removed",
            "INFO",
            message=f"Panel {panel.name if panel else panel_id} removed",
            guild_id=panel.guild_id if panel else None,
            panel_id=panel_id,
        )
        return ManagerResult.ok(True)

    # Connections -------------------------------------------------------------

    def effective_settings(self, panel: PanelConfig) -> PanelSettings:
        return merge_settings(self._config.provider_defaults, panel.config)

    async def connect_to_panel(self, panel_id: int) -> ManagerResult[VirtualizationProvider]:
        """Return the cached provider for ``panel_id`` if healthy, else build and connect one."""
        if panel_id is None:
            raise ValueError("panel_id is required")

        lock = self._connect_locks.setdefault(panel_id, asyncio.Lock())
        async with lock:
            cached = self._connections.get(panel_id)
            if cached is not None:
                if await cached.test_connection():
                    return ManagerResult.ok(cached, provider=cached.type)
                logger.info(
                    "Cached connection failed health check, reconnecting",
                    extra={"event": "panel_reconnect", "panel_id": panel_id},
                )
                self._connections.pop(panel_id, None)
                await self._safe_disconnect(panel_id, cached)

            panel_result = await self.get_panel(panel_id)
            if not panel_result.success:
                self._connect_locks.pop(panel_id, None)
                return ManagerResult.fail(panel_result.error, panel_result.error_code)
            panel = panel_result.data
            if not panel.active:
                self._connect_locks.pop(panel_id, None)
                return ManagerResult.fail(
                    f"Panel {panel.name} is disabled", ErrorCode.VALIDATION_FAILED, provider=panel.type
                )

            try:
                provider = self._registry.create(panel.type)
                connected = await provider.connect(
                    panel.api_url, panel.credentials, self.effective_settings(panel)
                )
            except VirtualizationError as exc:
                logger.warning(
                    "Failed to connect to panel: %s",
                    exc.message,
                    extra={"panel_id": panel_id, "error_code": exc.code.value},
                )
                return ManagerResult.fail(exc.message, exc.code, provider=panel.type)
            except Exception as exc:
                logger.exception("Failed to connect to panel", extra={"panel_id": panel_id})
                return ManagerResult.fail(str(exc), ErrorCode.UNKNOWN_ERROR, provider=panel.type)

            if not connected:
                return ManagerResult.fail(
                    "Failed to connect to panel", ErrorCode.CONNECTION_FAILED, provider=panel.type
                )

            self._connections[panel_id] = provider
            logger.info(
                "Connected to panel %s (%s)",
                panel.name,
                panel.type,
                extra={"event": "panel_connected", "panel_id": panel_id},
            )
            return ManagerResult.ok(provider, provider=panel.type)

    async def _safe_disconnect(self, panel_id: int | None, provider: VirtualizationProvider) -> None:
        try:
            await provider.disconnect()
        except Exception:
            logger.warning(
                "Error disconnecting from panel",
                exc_info=True,
                extra={"panel_id": panel_id},
            )

    async def disconnect_panel(self, panel_id: int) -> None:
        provider = self._connections.pop(panel_id, None)
        if provider is not None:
            await self._safe_disconnect(panel_id, provider)
            logger.info("Disconnected from panel %s", panel_id, extra={"panel_id": panel_id})

    async def disconnect_all(self) -> None:
        connections = list(self._connections.items())
        try:
            await asyncio.gather(
                *(self._safe_disconnect(panel_id, provider) for panel_id, provider in connections)
            )
        finally:
            self._connections.clear()
        logger.info("Disconnected from all panels", extra={"count": len(connections)})

    def is_cached(self, panel_id: int) -> bool:
        return panel_id in self._connections

    async def get_panel_auth_headers(self, panel_id: int) -> ManagerResult[dict[str, str]]:
        async def headers(provider: VirtualizationProvider) -> dict[str, str]:
            return provider.get_auth_headers()

        return await self._delegate(panel_id, "get auth headers", headers)

    # VMs -------------------------------------------------------------------------

    async def _delegate(
        self,
        panel_id: int,
        operation: str,
        call: Callable[[VirtualizationProvider], Awaitable[T | None]],
        *,
        missing: str | None = None,
        **context: Any,
    ) -> ManagerResult[T]:
        """Resolve the panel connection, run ``call`` and wrap the outcome."""
        connection = await self.connect_to_panel(panel_id)
        if not connection.success:
            return ManagerResult.fail(connection.error, connection.error_code, connection.provider)
        provider = connection.data

        try:
            data = await call(provider)
        except VirtualizationError as exc:
            logger.warning(
                "Failed to %s: %s",
                operation,
                exc.message,
                extra={"panel_id": panel_id, "error_code": exc.code.value, **context},
            )
            return ManagerResult.fail(exc.message, exc.code, provider.type)
        except Exception as exc:
            logger.exception(
                "Failed to %s", operation, extra={"panel_id": panel_id, **context}
            )
            return ManagerResult.fail(
                str(exc) or exc.__class__.__name__, ErrorCode.UNKNOWN_ERROR, provider.type
            )

        if data is None:
            return ManagerResult.fail(missing or "Not found", ErrorCode.VM_NOT_FOUND, provider.type)
        return ManagerResult.ok(data, provider=provider.type)

    async def list_vms(self, panel_id: int) -> ManagerResult[list[VMStatus]]:
        return await self._delegate(panel_id, "list VMs", lambda p: p.list_vms())

    async def get_vm(self, panel_id: int, vm_id: str) -> ManagerResult[VMStatus]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id, "get VM", lambda p: p.get_vm(vm_id), missing="VM not found", vm_id=vm_id
        )

    async def execute_vm_action(
        self,
        panel_id: int,
        action: VMAction | Mapping[str, Any],
        user_id: str,
        guild_id: str | None = None,
    ) -> ManagerResult[VMActionResult]:
        if not isinstance(action, VMAction):
            action = VMAction.model_validate(action)
        _require_vm_id(action.vm_id)

        logger.info(
            "Executing VM action %s",
            action.type,
            extra={
                "event": "vm_action",
                "panel_id": panel_id,
                "vm_id": action.vm_id,
                "action": action.type,
                "user_id": user_id,
            },
        )
        result = await self._delegate(
            panel_id,
            f"execute {action.type}",
            lambda p: p.execute_action(action),
            vm_id=action.vm_id,
            user_id=user_id,
        )
        if result.success and not result.data.success:
            outcome = result.data
            result = ManagerResult.fail(
                outcome.error or outcome.message,
                outcome.error_code or ErrorCode.ACTION_FAILED,
                result.provider,
            )

        record_event(
            "vm_action",
            "INFO" if result.success else "WARNING",
            message=(
                result.data.message
                if result.success
                else f"{action.type} on VM {action.vm_id} failed: {result.error}"
            ),
            guild_id=guild_id,
            panel_id=panel_id,
            vm_id=action.vm_id,
            user_id=user_id,
            error_code=result.error_code,
            meta={"action": action.type, "task_id": result.data.task_id if result.success else None},
        )
        return result

    async def get_system_info(self, panel_id: int) -> ManagerResult[SystemInfo]:
        return await self._delegate(panel_id, "get system info", lambda p: p.get_system_info())

    async def get_vm_history(
        self, panel_id: int, vm_id: str, timeframe: str = "day"
    ) -> ManagerResult[list[RRDDataPoint]]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id,
            "get VM history",
            lambda p: p.get_history(vm_id, timeframe),
            vm_id=vm_id,
            timeframe=timeframe,
        )

    async def get_novnc_url(self, panel_id: int, vm_id: str) -> ManagerResult[NoVNCDescriptor]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id, "get noVNC URL", lambda p: p.get_novnc_url(vm_id), vm_id=vm_id
        )

    async def get_vm_specs(self, panel_id: int, vm_id: str) -> ManagerResult[VMSpecs]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id,
            "get VM specs",
            lambda p: p.get_vm_specs(vm_id),
            missing="VM not found",
            vm_id=vm_id,
        )

    async def update_vm_specs(
        self, panel_id: int, vm_id: str, specs: Mapping[str, Any]
    ) -> ManagerResult[VMActionResult]:
        _require_vm_id(vm_id)
        result = await self._delegate(
            panel_id, "update VM specs", lambda p: p.update_vm_specs(vm_id, specs), vm_id=vm_id
        )
        if result.success and not result.data.success:
            outcome = result.data
            return ManagerResult.fail(
                outcome.error or outcome.message,
                outcome.error_code or ErrorCode.ACTION_FAILED,
                result.provider,
            )
        return result

    async def get_vm_logs(
        self, panel_id: int, vm_id: str, lines: int = 50
    ) -> ManagerResult[list[str]]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id, "get VM logs", lambda p: p.get_vm_logs(vm_id, lines), vm_id=vm_id
        )

    async def get_vm_console_url(self, panel_id: int, vm_id: str) -> ManagerResult[str]:
        _require_vm_id(vm_id)
        return await self._delegate(
            panel_id,
            "get console URL",
            lambda p: p.get_vm_console_url(vm_id),
            missing="VM not found",
            vm_id=vm_id,
        )

    # Aggregates ----------------------------------------------------------------------

    async def get_stats(self, guild_id: str) -> ManagerResult[dict[str, int]]:
        """VM counts across a guild's panels; a failing panel contributes zero."""
        panels_result = await self.get_panels_by_guild(guild_id)
        if not panels_result.success:
            return ManagerResult.fail(panels_result.error, panels_result.error_code)

        panels = panels_result.data
        stats = {
            "total_panels": len(panels),
            "active_panels": 0,
            "total_vms": 0,
            "running_vms": 0,
            "stopped_vms": 0,
        }
        for panel in panels:
            if not panel.active:
                continue
            vms_result = await self.list_vms(panel.id)
            if not vms_result.success:
                logger.warning(
                    "Failed to get stats from panel: %s",
                    vms_result.error,
                    extra={"panel_id": panel.id, "guild_id": guild_id},
                )
                continue
            vms = vms_result.data
            stats["active_panels"] += 1
            stats["total_vms"] += len(vms)
            stats["running_vms"] += sum(1 for vm in vms if vm.status == "running")
            stats["stopped_vms"] += sum(1 for vm in vms if vm.status == "stopped")
        return ManagerResult.ok(stats)


def _coerce_credentials(credentials: Any) -> Any:
    if isinstance(credentials, Mapping):
        return parse_credentials(dict(credentials))
    return credentials


def _require_vm_id(vm_id: str) -> None:
    if not vm_id:
        raise ValueError("vm_id is required")


__all__ = ["VirtualizationManager"]
