from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from virtbot.core.config import AppConfig
from virtbot.main import app
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.providers.models import (
    NoVNCDescriptor,
    RRDDataPoint,
    VMActionResult,
    VMStatus,
)
from virtbot.providers.registry import ProviderRegistry


class ApiProvider:
    """In-process stand-in for a Proxmox connection."""

    type = "proxmox"
    name = "Stub Proxmox"
    accept_credentials = True

    def __init__(self) -> None:
        self.vms = {
            "100": VMStatus(id="100", node="pve1", name="web", status="running", cpu_usage=3.0),
            "101": VMStatus(id="101", node="pve1", name="db", status="stopped"),
        }
        self.actions = []

    async def connect(self, api_url, credentials, config=None):
        return ApiProvider.accept_credentials

    async def disconnect(self):
        return None

    async def test_connection(self):
        return True

    async def list_vms(self):
        return list(self.vms.values())

    async def get_vm(self, vm_id):
        return self.vms.get(vm_id)

    async def execute_action(self, action):
        self.actions.append(action)
        if action.vm_id not in self.vms:
            return VMActionResult(success=False, message="VM not found", error="VM not found", error_code="VM_NOT_FOUND")
        return VMActionResult(success=True, message=f"Action {action.type} sent", task_id="UPID:pve1:1")

    async def get_history(self, vm_id, timeframe):
        return [RRDDataPoint(time=1700000000, cpu=0.25, netin=2.0, netout=None, mem=1024.0)]

    async def get_novnc_url(self, vm_id):
        return NoVNCDescriptor(
            url="https://h:8006/#v1:0:=qemu/100:4:5:=noVNC",
            token="PVEVNC:abc",
            websocket="wss://h:8006/api2/json/nodes/pve1/qemu/100/vncwebsocket?port=5900&vncticket=x",
            node="pve1",
            port=5900,
        )

    def get_auth_headers(self):
        return {"Authorization": "PVEAPIToken=root@pam!ci=T"}


@pytest.fixture
def api_manager(memory_db) -> VirtualizationManager:
    ApiProvider.accept_credentials = True
    return VirtualizationManager(registry=ProviderRegistry({"proxmox": ApiProvider}), config=AppConfig())


@pytest.fixture
def client(api_manager, monkeypatch):
    monkeypatch.delenv("VIRTBOT_ENV", raising=False)
    app.state.manager = api_manager
    # Without the context manager the lifespan (and its real database) never runs.
    test_client = TestClient(app)
    yield test_client
    del app.state.manager


@pytest.fixture
def reject_credentials():
    ApiProvider.accept_credentials = False
    yield
    ApiProvider.accept_credentials = True
