from __future__ import annotations

import httpx
import pytest

from virtbot.core.exceptions import (
    AuthenticationError,
    ConnectionFailedError,
    ErrorCode,
    ResourceNotFoundError,
    ValidationFailedError,
)
from virtbot.providers import base as provider_base
from virtbot.providers.base import FORM_CONTENT_TYPE, BaseProvider
from virtbot.providers.cache import TTLCache
from virtbot.providers.models import PanelSettings, RateLimit, parse_credentials

API_URL = "https://pve.example:8006"


class DummyProvider(BaseProvider):
    name = "Dummy"
    type = "dummy"

    def __init__(self, connect_result: bool | Exception = True) -> None:
        super().__init__()
        self.connect_result = connect_result
        self.disconnects = 0

    async def perform_connect(self) -> bool:
        if isinstance(self.connect_result, Exception):
            raise self.connect_result
        return self.connect_result

    async def perform_disconnect(self) -> None:
        self.disconnects += 1

    async def perform_connection_test(self) -> bool:
        await self.make_request("GET", "/ping")
        return True

    def get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": "Bearer test"}

    async def list_vms(self):
        raise NotImplementedError

    async def get_vm(self, vm_id):
        raise NotImplementedError

    async def execute_action(self, action):
        raise NotImplementedError

    async def get_history(self, vm_id, timeframe):
        raise NotImplementedError

    async def get_novnc_url(self, vm_id):
        raise NotImplementedError

    async def get_system_info(self):
        raise NotImplementedError

    async def get_vm_specs(self, vm_id):
        raise NotImplementedError

    async def update_vm_specs(self, vm_id, specs):
        raise NotImplementedError

    async def get_vm_logs(self, vm_id, lines=50):
        raise NotImplementedError

    async def get_vm_console_url(self, vm_id):
        raise NotImplementedError


def _credentials():
    return parse_credentials({"type": "token", "data": {"token": "root@pam!ci=secret"}})


async def _connected(config: PanelSettings | None = None) -> DummyProvider:
    provider = DummyProvider()
    assert await provider.connect(API_URL + "/", _credentials(), config)
    return provider


@pytest.mark.asyncio
async def test_connect_strips_trailing_slash_and_tracks_state():
    provider = await _connected()

    assert provider.connected is True
    assert provider.api_url == API_URL

    await provider.disconnect()
    await provider.disconnect()

    assert provider.connected is False
    assert provider.disconnects == 1


@pytest.mark.asyncio
async def test_connect_wraps_unexpected_errors():
    provider = DummyProvider(connect_result=RuntimeError("boom"))

    with pytest.raises(ConnectionFailedError) as excinfo:
        await provider.connect(API_URL, _credentials())

    assert "Failed to connect: boom" in excinfo.value.message
    assert provider.connected is False


@pytest.mark.asyncio
async def test_test_connection_false_when_disconnected_or_failing(backend):
    provider = DummyProvider()
    assert await provider.test_connection() is False

    await provider.connect(API_URL, _credentials())
    backend.add("GET", "/ping", httpx.Response(401, json={"message": "bad token"}))

    assert await provider.test_connection() is False


@pytest.mark.asyncio
async def test_make_request_merges_headers_and_json_body(backend):
    provider = await _connected(PanelSettings(timeout=5000, verify_ssl=False))
    backend.add("POST", "/things", {"data": "ok"})

    payload = await provider.make_request("POST", "/things", body={"a": 1}, headers={"X-Extra": "1"})

    assert payload == {"data": "ok"}
    call = backend.calls_to("POST", "/things")[0]
    assert call["json"] == {"a": 1}
    assert call["data"] is None
    assert call["headers"]["Authorization"] == "Bearer test"
    assert call["headers"]["X-Extra"] == "1"
    assert call["timeout"] == 5
    assert call["verify"] is False


@pytest.mark.asyncio
async def test_make_request_sends_form_body_when_requested(backend):
    provider = await _connected()
    backend.add("POST", "/login", {"data": {}})

    await provider.make_request(
        "POST", "/login", body={"username": "root"}, headers={"Content-Type": FORM_CONTENT_TYPE}
    )

    call = backend.calls_to("POST", "/login")[0]
    assert call["data"] == {"username": "root"}
    assert call["json"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_type", "code"),
    [
        (401, AuthenticationError, ErrorCode.AUTHENTICATION_FAILED),
        (403, AuthenticationError, ErrorCode.AUTHENTICATION_FAILED),
        (404, ResourceNotFoundError, ErrorCode.RESOURCE_NOT_FOUND),
        (400, ValidationFailedError, ErrorCode.VALIDATION_FAILED),
        (500, ConnectionFailedError, ErrorCode.CONNECTION_FAILED),
    ],
)
async def test_error_statuses_map_to_typed_errors(backend, status, error_type, code):
    provider = await _connected()
    backend.add("GET", "/fail", httpx.Response(status, json={"errors": {"vmid": "invalid"}}))

    with pytest.raises(error_type) as excinfo:
        await provider.make_request("GET", "/fail")

    assert excinfo.value.code is code


@pytest.mark.asyncio
async def test_server_error_keeps_status_code(backend):
    provider = await _connected()
    backend.add("GET", "/fail", httpx.Response(503, text="maintenance"))

    with pytest.raises(ConnectionFailedError) as excinfo:
        await provider.make_request("GET", "/fail")

    assert excinfo.value.status_code == 503
    assert excinfo.value.message == "HTTP 503: maintenance"


@pytest.mark.asyncio
async def test_transport_errors_become_connection_failures(backend):
    provider = await _connected(PanelSettings(timeout=1500))
    backend.add("GET", "/slow", httpx.ReadTimeout("timed out"))
    backend.add("GET", "/down", httpx.ConnectError("refused"))

    with pytest.raises(ConnectionFailedError) as timeout:
        await provider.make_request("GET", "/slow")
    with pytest.raises(ConnectionFailedError) as refused:
        await provider.make_request("GET", "/down")

    assert timeout.value.message == "Request timed out after 1500 ms"
    assert refused.value.message.startswith("Request failed:")


@pytest.mark.asyncio
async def test_with_retry_succeeds_on_third_attempt(monkeypatch):
    provider = await _connected(PanelSettings(retries=3))
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    monkeypatch.setattr(provider_base, "_sleep", fake_sleep)
    attempts = {"count": 0}

    async def flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise ConnectionFailedError("temporary")
        return "done"

    assert await provider.with_retry(flaky) == "done"
    assert attempts["count"] == 3
    assert sleeps == [2, 4]


@pytest.mark.asyncio
async def test_with_retry_reraises_last_error_after_exhaustion(monkeypatch):
    provider = await _connected(PanelSettings(retries=2))

    async def fake_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr(provider_base, "_sleep", fake_sleep)
    attempts = {"count": 0}

    async def always_down():
        attempts["count"] += 1
        raise ConnectionFailedError(f"down {attempts['count']}")

    with pytest.raises(ConnectionFailedError) as excinfo:
        await provider.with_retry(always_down)

    assert attempts["count"] == 2
    assert excinfo.value.message == "down 2"


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_semantic_errors():
    provider = await _connected(PanelSettings(retries=5))
    attempts = {"count": 0}

    async def unauthorized():
        attempts["count"] += 1
        raise AuthenticationError("nope")

    with pytest.raises(AuthenticationError):
        await provider.with_retry(unauthorized)

    assert attempts["count"] == 1


@pytest.mark.asyncio
async def test_rate_limit_waits_for_window_once_limit_is_reached(monkeypatch):
    provider = await _connected(PanelSettings(rate_limit=RateLimit(requests=2, window=1000)))
    clock = {"now": 100.0}
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock["now"] += seconds

    monkeypatch.setattr(provider_base, "_now", lambda: clock["now"])
    monkeypatch.setattr(provider_base, "_sleep", fake_sleep)

    await provider.check_rate_limit()
    clock["now"] += 0.25
    await provider.check_rate_limit()
    assert sleeps == []

    await provider.check_rate_limit()
    assert sleeps == [pytest.approx(0.75)]

    clock["now"] += 2
    await provider.check_rate_limit()
    assert len(sleeps) == 1


def test_ttl_cache_expiry_and_prefix_invalidation(monkeypatch):
    from virtbot.providers import cache as cache_module

    clock = {"now": 0.0}
    monkeypatch.setattr(cache_module, "_now", lambda: clock["now"])

    cache = TTLCache()
    cache.set("vm:100:status", {"status": "running"}, ttl=10)
    cache.set("vm:100:config", {"cores": 2}, ttl=60)
    cache.set("nodes", ["pve"], ttl=60)

    clock["now"] = 11
    assert cache.get("vm:100:status") is None
    assert cache.get("vm:100:config") == {"cores": 2}

    cache.invalidate_prefix("vm:100")
    assert cache.get("vm:100:config") is None
    assert cache.get("nodes") == ["pve"]

    cache.delete("nodes")
    assert len(cache) == 0
