"""Proxmox VE provider."""

from __future__ import annotations

import re
import time
from typing import Any, Mapping
from urllib.parse import quote, urlsplit

from virtbot.core.exceptions import (
    AuthenticationError,
    ConnectionFailedError,
    ErrorCode,
    ResourceNotFoundError,
    ValidationFailedError,
    VirtualizationError,
)

from .base import FORM_CONTENT_TYPE, BaseProvider
from .models import (
    TIMEFRAMES,
    NetworkInterface,
    NetworkTraffic,
    NodeInfo,
    NoVNCDescriptor,
    RRDDataPoint,
    SystemInfo,
    TokenCredentials,
    UserPassCredentials,
    VMAction,
    VMActionResult,
    VMSpecs,
    VMStatus,
)

VERSION_ENDPOINT = "/api2/json/version"
NODES_ENDPOINT = "/api2/json/nodes"
TICKET_ENDPOINT = "/api2/json/access/ticket"

TICKET_LIFETIME = 2 * 60 * 60  # seconds

_STATUS_MAP = {
    "running": "running",
    "stopped": "stopped",
    "paused": "paused",
    "suspended": "suspended",
}

_ACTION_MAP = {
    "start": "start",
    "stop": "stop",
    "restart": "reboot",
    "pause": "suspend",
    "resume": "resume",
    "reset": "reset",
    "suspend": "suspend",
}

_DISK_PREFIXES = ("virtio", "scsi", "ide", "sata")
_DISK_SIZE_RE = re.compile(r"size=(\d+)G")
_MAC_RE = re.compile(r"([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})")

_FEATURES = ["console", "snapshots", "clone", "template", "migration"]


def map_status(status: Any, qmp_status: Any = None) -> str:
    """Fold a Proxmox status (and optional QMP status) into the five canonical states."""
    state = _STATUS_MAP.get(str(status).lower(), "unknown") if status else "unknown"
    if state == "running" and qmp_status:
        qmp_state = _STATUS_MAP.get(str(qmp_status).lower())
        if qmp_state in ("paused", "suspended"):
            return qmp_state
    return state


def map_action(action_type: str) -> str:
    try:
        return _ACTION_MAP[action_type]
    except KeyError:
        raise ValueError(f"Unsupported action: {action_type}") from None


def total_storage_gb(config: Mapping[str, Any]) -> int:
    total = 0
    for key, value in config.items():
        if not key.startswith(_DISK_PREFIXES) or not isinstance(value, str):
            continue
        match = _DISK_SIZE_RE.search(value)
        if match:
            total += int(match.group(1))
    return total


def network_interfaces(config: Mapping[str, Any]) -> list[NetworkInterface]:
    interfaces: list[NetworkInterface] = []
    for key in sorted(config):
        if not re.fullmatch(r"net\d+", key):
            continue
        value = config[key]
        match = _MAC_RE.search(value) if isinstance(value, str) else None
        interfaces.append(NetworkInterface(name=key, mac=match.group(0) if match else None))
    return interfaces


def _is_probe_miss(exc: VirtualizationError) -> bool:
    # Proxmox answers 500 "does not exist" for a VM living on another node.
    if isinstance(exc, (ResourceNotFoundError, ValidationFailedError)):
        return True
    return isinstance(exc, ConnectionFailedError) and exc.status_code is not None


class ProxmoxProvider(BaseProvider):
    name = "Proxmox Virtual Environment"
    type = "proxmox"
    version = "8.x"

    def __init__(self) -> None:
        super().__init__()
        self._ticket = ""
        self._csrf_token = ""
        self._ticket_expiry = 0.0

    # Session lifecycle -------------------------------------------------

    async def perform_connect(self) -> bool:
        credentials = self.credentials
        if isinstance(credentials, TokenCredentials):
            return await self._test_token_auth()
        if isinstance(credentials, UserPassCredentials):
            return await self._login(credentials)
        self.logger.error(
            "Unsupported credentials type for Proxmox: %s",
            getattr(credentials, "type", None),
            extra={"event": "provider_connect_failed"},
        )
        return False

    async def _test_token_auth(self) -> bool:
        try:
            payload = await self.make_request("GET", VERSION_ENDPOINT)
        except VirtualizationError as exc:
            self.logger.error(
                "Token authentication failed: %s",
                exc.message,
                extra={"event": "provider_auth_failed", "error_code": exc.code.value},
            )
            return False
        version = (payload.get("data") or {}).get("version")
        self.logger.info("Connected to Proxmox %s", version)
        return True

    async def _login(self, credentials: UserPassCredentials) -> bool:
        self._clear_session()
        form = {
            "username": credentials.data.username,
            "password": credentials.data.password,
            **(credentials.data.additional_params or {}),
        }
        try:
            payload = await self.make_request(
                "POST",
                TICKET_ENDPOINT,
                body=form,
                headers={"Content-Type": FORM_CONTENT_TYPE},
            )
        except VirtualizationError as exc:
            self.logger.error(
                "Login failed: %s",
                exc.message,
                extra={"event": "provider_auth_failed", "error_code": exc.code.value},
            )
            return False

        data = payload.get("data") or {}
        ticket = data.get("ticket")
        if not ticket:
            self.logger.error("Login response carried no ticket", extra={"event": "provider_auth_failed"})
            return False
        self._ticket = ticket
        self._csrf_token = data.get("CSRFPreventionToken", "")
        self._ticket_expiry = time.monotonic() + TICKET_LIFETIME
        return True

    async def perform_disconnect(self) -> None:
        self._clear_session()

    async def perform_connection_test(self) -> bool:
        await self.make_request("GET", VERSION_ENDPOINT)
        return True

    def _clear_session(self) -> None:
        self._ticket = ""
        self._csrf_token = ""
        self._ticket_expiry = 0.0

    def get_auth_headers(self) -> dict[str, str]:
        credentials = self.credentials
        if isinstance(credentials, TokenCredentials):
            return {"Authorization": f"PVEAPIToken={credentials.data.token}"}
        if isinstance(credentials, UserPassCredentials) and self._ticket:
            if time.monotonic() > self._ticket_expiry:
                raise AuthenticationError("Session expired, please reconnect")
            return {
                "Cookie": f"PVEAuthCookie={self._ticket}",
                "CSRFPreventionToken": self._csrf_token,
            }
        return {}

    # Helpers -------------------------------------------------------------

    async def _get(self, endpoint: str, params: Mapping[str, Any] | None = None) -> Any:
        payload = await self.with_retry(lambda: self.make_request("GET", endpoint, params=params))
        return payload.get("data")

    async def _list_nodes(self) -> list[dict[str, Any]]:
        use_cache = self.config.cache.enabled
        if use_cache:
            cached = self.cache.get("nodes")
            if cached is not None:
                return cached
        nodes = await self._get(NODES_ENDPOINT) or []
        if use_cache:
            self.cache.set("nodes", nodes, self.config.cache.ttl)
        return nodes

    async def _locate(self, vm_id: str) -> tuple[str, dict[str, Any]] | None:
        """Probe every node for ``vm_id``; return its node and current status."""
        for node in await self._list_nodes():
            node_name = node.get("node")
            try:
                payload = await self.make_request(
                    "GET", f"{NODES_ENDPOINT}/{node_name}/qemu/{vm_id}/status/current"
                )
            except VirtualizationError as exc:
                if _is_probe_miss(exc):
                    continue
                raise
            return node_name, payload.get("data") or {}
        return None

    async def _find_vm_node(self, vm_id: str) -> str | None:
        located = await self._locate(vm_id)
        return located[0] if located else None

    def _vm_path(self, node: str, vm_id: str) -> str:
        return f"{NODES_ENDPOINT}/{node}/qemu/{vm_id}"

    @staticmethod
    def _to_status(raw: Mapping[str, Any], node: str, fallback_id: str | None = None) -> VMStatus:
        vm_id = str(raw.get("vmid", fallback_id))
        cpu = raw.get("cpu")
        return VMStatus(
            id=vm_id,
            node=node,
            name=raw.get("name") or f"VM-{vm_id}",
            status=map_status(raw.get("status"), raw.get("qmpstatus")),
            uptime=raw.get("uptime"),
            cpu_usage=round(cpu * 100, 2) if cpu is not None else None,
            memory_usage=raw.get("mem"),
            network_traffic=NetworkTraffic(
                rx_bytes=raw.get("netin") or 0,
                tx_bytes=raw.get("netout") or 0,
            ),
            type="kvm",
        )

    # Contract ------------------------------------------------------------

    async def list_vms(self) -> list[VMStatus]:
        self.ensure_connected()
        vms: list[VMStatus] = []
        for node in await self._list_nodes():
            node_name = node.get("node")
            try:
                node_vms = await self._get(f"{NODES_ENDPOINT}/{node_name}/qemu") or []
            except VirtualizationError as exc:
                self.logger.warning(
                    "Failed to get VMs from node %s: %s",
                    node_name,
                    exc.message,
                    extra={"event": "provider_node_failed", "node": node_name},
                )
                continue
            vms.extend(self._to_status(vm, node_name) for vm in node_vms)
        return vms

    async def get_vm(self, vm_id: str) -> VMStatus | None:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        located = await self._locate(vm_id)
        if located is None:
            return None
        node, data = located
        return self._to_status(data, node, fallback_id=vm_id)

    async def execute_action(self, action: VMAction) -> VMActionResult:
        self.ensure_connected()
        self.validate_vm_id(action.vm_id)
        verb = map_action(action.type)

        node = await self._find_vm_node(action.vm_id)
        if node is None:
            return VMActionResult(
                success=False,
                message=f"VM {action.vm_id} not found",
                error=f"VM {action.vm_id} not found",
                error_code=ErrorCode.VM_NOT_FOUND.value,
            )

        try:
            payload = await self.make_request(
                "POST",
                f"{self._vm_path(node, action.vm_id)}/status/{verb}",
                body=action.options or None,
            )
        except VirtualizationError as exc:
            self.logger.error(
                "Failed to execute %s on VM %s: %s",
                action.type,
                action.vm_id,
                exc.message,
                extra={"event": "vm_action_failed", "vm_id": action.vm_id, "node": node},
            )
            return VMActionResult(
                success=False,
                message=f"Failed to execute {action.type} on VM {action.vm_id}",
                error=exc.message,
                error_code=ErrorCode.ACTION_FAILED.value,
            )

        return VMActionResult(
            success=True,
            message=f"Action {action.type} executed successfully on VM {action.vm_id}",
            task_id=payload.get("data"),
            metadata={"node": node, "action": verb},
        )

    async def get_history(self, vm_id: str, timeframe: str) -> list[RRDDataPoint]:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        if timeframe not in TIMEFRAMES:
            raise ValidationFailedError(
                f"Invalid timeframe '{timeframe}', expected one of {', '.join(TIMEFRAMES)}"
            )
        node = await self._find_vm_node(vm_id)
        if node is None:
            raise ResourceNotFoundError("VM", vm_id)
        points = await self._get(
            f"{self._vm_path(node, vm_id)}/rrddata",
            params={"timeframe": timeframe, "cf": "AVERAGE"},
        )
        return [RRDDataPoint.model_validate(point) for point in points or []]

    async def get_novnc_url(self, vm_id: str) -> NoVNCDescriptor:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        node = await self._find_vm_node(vm_id)
        if node is None:
            raise ResourceNotFoundError("VM", vm_id)

        payload = await self.make_request(
            "POST", f"{self._vm_path(node, vm_id)}/vncproxy", body={"websocket": 1}
        )
        data = payload.get("data") or {}
        ticket = data.get("ticket", "")
        port = int(data.get("port", 0))
        host = urlsplit(self.api_url).netloc
        websocket = (
            f"wss://{host}{self._vm_path(node, vm_id)}/vncwebsocket"
            f"?port={port}&vncticket={quote(ticket, safe='')}"
        )
        return NoVNCDescriptor(
            url=self.console_url(vm_id),
            token=ticket,
            websocket=websocket,
            node=node,
            port=port,
        )

    async def get_system_info(self) -> SystemInfo:
        self.ensure_connected()
        version = await self._get(VERSION_ENDPOINT) or {}
        nodes = await self._list_nodes()
        return SystemInfo(
            version=str(version.get("version", "unknown")),
            nodes=[
                NodeInfo(
                    name=node.get("node", ""),
                    status=node.get("status", "unknown"),
                    resources={
                        "cpu": {"used": node.get("cpu"), "total": node.get("maxcpu")},
                        "memory": {"used": node.get("mem"), "total": node.get("maxmem")},
                        "uptime": node.get("uptime"),
                    },
                )
                for node in nodes
            ],
            features=list(_FEATURES),
        )

    async def get_vm_specs(self, vm_id: str) -> VMSpecs | None:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        node = await self._find_vm_node(vm_id)
        if node is None:
            return None
        config = await self._get(f"{self._vm_path(node, vm_id)}/config") or {}
        return VMSpecs(
            cpu=int(config.get("cores") or 1),
            memory=int(config.get("memory") or 512),
            storage=total_storage_gb(config),
            network=network_interfaces(config),
        )

    async def update_vm_specs(self, vm_id: str, specs: Mapping[str, Any]) -> VMActionResult:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        node = await self._find_vm_node(vm_id)
        if node is None:
            return VMActionResult(
                success=False,
                message="VM not found",
                error=f"VM {vm_id} not found",
                error_code=ErrorCode.VM_NOT_FOUND.value,
            )

        update: dict[str, Any] = {}
        if specs.get("cpu"):
            update["cores"] = specs["cpu"]
        if specs.get("memory"):
            update["memory"] = specs["memory"]
        if not update:
            return VMActionResult(success=True, message=f"No changes for VM {vm_id}")

        await self.make_request("PUT", f"{self._vm_path(node, vm_id)}/config", body=update)
        return VMActionResult(success=True, message=f"VM {vm_id} specs updated successfully")

    async def get_vm_logs(self, vm_id: str, lines: int = 50) -> list[str]:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        node = await self._find_vm_node(vm_id)
        if node is None:
            return []
        entries = await self._get(f"{self._vm_path(node, vm_id)}/log", params={"limit": lines})
        return [f"{entry.get('n')}: {entry.get('t')}" for entry in entries or []]

    async def get_vm_console_url(self, vm_id: str) -> str | None:
        self.ensure_connected()
        self.validate_vm_id(vm_id)
        node = await self._find_vm_node(vm_id)
        if node is None:
            return None
        return self.console_url(vm_id)

    def console_url(self, vm_id: str) -> str:
        return f"{self.api_url}/#v1:0:=qemu/{vm_id}:4:5:=noVNC"


__all__ = ["ProxmoxProvider", "map_action", "map_status", "network_interfaces", "total_storage_gb"]
