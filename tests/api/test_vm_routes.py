from __future__ import annotations

from urllib.parse import urlencode

import pytest
from starlette.websockets import WebSocketDisconnect

from virtbot.api import vm as vm_routes
from virtbot.providers.models import parse_credentials
from virtbot.storage import panels as panel_store
from virtbot.telemetry.events import list_recent_events

TOKEN = parse_credentials({"type": "token", "data": {"token": "root@pam!ci=T"}})


@pytest.fixture
def panel_id(memory_db) -> int:
    panel = panel_store.create_panel(
        guild_id="g1", name="main", type="proxmox", api_url="https://h:8006", credentials=TOKEN
    )
    return panel.id


def test_list_vms_across_guild_panels(client, panel_id):
    response = client.get("/api/vm/list", params={"guildid": "g1"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [vm["id"] for vm in data] == ["100", "101"]
    assert all(vm["panel_id"] == panel_id for vm in data)


def test_list_vms_without_panels_is_not_found(client):
    response = client.get("/api/vm/list", params={"guildid": "empty"})

    assert response.status_code == 404
    assert response.json()["detail"]["errorCode"] == "RESOURCE_NOT_FOUND"


def test_status_of_foreign_panel_is_forbidden(client, panel_id):
    response = client.get("/api/vm/status", params={"panel": panel_id, "id": "100", "guildid": "g2"})

    assert response.status_code == 403


def test_status_of_missing_vm_is_not_found(client, panel_id):
    response = client.get("/api/vm/status", params={"panel": panel_id, "id": "999", "guildid": "g1"})

    assert response.status_code == 404
    assert response.json()["detail"] == {
        "message": "Failed to get VM status",
        "error": "VM not found",
        "errorCode": "VM_NOT_FOUND",
    }


def test_action_records_audit_event_for_header_user(client, panel_id):
    response = client.post(
        "/api/vm/action",
        json={"action": "restart", "vmId": "100", "guildId": "g1", "panelId": panel_id},
        headers={"x-user-id": "user-42"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["provider"] == "proxmox"
    assert response.json()["data"]["task_id"] == "UPID:pve1:1"
    [event] = list_recent_events(limit=5, guild_id="g1")
    assert event["kind"] == "vm_action"
    assert event["user_id"] == "user-42"
    assert event["meta"]["action"] == "restart"


def test_action_rejects_unknown_verb(client, panel_id):
    response = client.post(
        "/api/vm/action",
        json={"action": "suspend", "vmId": "100", "guildId": "g1", "panelId": panel_id},
    )

    assert response.status_code == 422


def test_rrddata_scales_cpu_and_network(client, panel_id):
    response = client.get(
        "/api/vm/rrddata", params={"panel": panel_id, "id": "100", "guildid": "g1", "timeframe": "hour"}
    )

    assert response.status_code == 200
    [point] = response.json()["data"]
    assert point["cpu"] == 25.0
    assert point["netin"] == 2048.0
    assert point["netout"] is None
    assert point["mem"] == 1024.0


def test_rrddata_rejects_unknown_timeframe(client, panel_id):
    response = client.get(
        "/api/vm/rrddata", params={"panel": panel_id, "id": "100", "guildid": "g1", "timeframe": "decade"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid timeframe: decade"


def test_novnc_descriptor(client, panel_id):
    response = client.get("/api/vm/novnc", params={"panel": panel_id, "id": "100", "guildid": "g1"})

    assert response.status_code == 200
    assert response.json()["data"]["port"] == 5900


def test_vnc_proxy_closes_for_foreign_panel(client, panel_id):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(
            f"/api/vm/vnc-proxy?websocketUrl=wss://h/x&panelId={panel_id}&guildId=g2"
        ) as websocket:
            websocket.receive_bytes()

    assert excinfo.value.code == 1008


class RecordingRelay:
    created: list = []

    def __init__(self, websocket, upstream_url, headers, *, verify_ssl=True):
        self.websocket = websocket
        RecordingRelay.created.append({"url": upstream_url, "headers": headers, "verify_ssl": verify_ssl})

    async def run(self):
        await self.websocket.accept()
        await self.websocket.close()


@pytest.fixture
def relay_log(monkeypatch):
    RecordingRelay.created = []
    monkeypatch.setattr(vm_routes, "VNCRelay", RecordingRelay)
    return RecordingRelay.created


def _proxy_path(websocket_url: str, panel_id: int, guild_id: str = "g1") -> str:
    query = urlencode({"websocketUrl": websocket_url, "panelId": panel_id, "guildId": guild_id})
    return f"/api/vm/vnc-proxy?{query}"


def test_vnc_proxy_refuses_foreign_upstream_host(client, panel_id, relay_log):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(_proxy_path("wss://attacker.example/steal", panel_id)) as websocket:
            websocket.receive_bytes()

    assert excinfo.value.code == 1008
    assert relay_log == []


def test_vnc_proxy_relays_panel_console_with_auth_headers(client, panel_id, relay_log):
    console = "wss://h:8006/api2/json/nodes/pve1/qemu/100/vncwebsocket?port=5900&vncticket=x"

    with client.websocket_connect(_proxy_path(console, panel_id)) as websocket:
        with pytest.raises(WebSocketDisconnect):
            websocket.receive_bytes()

    assert relay_log == [
        {"url": console, "headers": {"Authorization": "PVEAPIToken=root@pam!ci=T"}, "verify_ssl": True}
    ]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_correlation_id_is_echoed(client):
    response = client.get("/api/health", headers={"x-correlation-id": "abc123"})

    assert response.headers["x-correlation-id"] == "abc123"
    assert client.get("/api/health").headers["x-correlation-id"]
