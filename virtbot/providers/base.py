"""Provider contract and shared scaffolding for hypervisor backends."""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from virtbot.core.exceptions import (
    AuthenticationError,
    ConnectionFailedError,
    ResourceNotFoundError,
    ValidationFailedError,
    VirtualizationError,
)

from .cache import TTLCache
from .models import (
    NoVNCDescriptor,
    PanelSettings,
    RRDDataPoint,
    SystemInfo,
    VMAction,
    VMActionResult,
    VMSpecs,
    VMStatus,
)
from .utils import error_text, http_error_extra

T = TypeVar("T")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _now() -> float:
    return time.monotonic()


class VirtualizationProvider(abc.ABC):
    """Capabilities every hypervisor backend exposes to the manager."""

    name: str
    type: str
    version: str | None = None

    @abc.abstractmethod
    async def connect(self, api_url: str, credentials: Any, config: PanelSettings | None = None) -> bool: ...

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    async def test_connection(self) -> bool: ...

    @abc.abstractmethod
    async def list_vms(self) -> list[VMStatus]: ...

    @abc.abstractmethod
    async def get_vm(self, vm_id: str) -> VMStatus | None: ...

    @abc.abstractmethod
    async def execute_action(self, action: VMAction) -> VMActionResult: ...

    @abc.abstractmethod
    async def get_history(self, vm_id: str, timeframe: str) -> list[RRDDataPoint]: ...

    @abc.abstractmethod
    async def get_novnc_url(self, vm_id: str) -> NoVNCDescriptor: ...

    @abc.abstractmethod
    async def get_system_info(self) -> SystemInfo: ...

    @abc.abstractmethod
    def get_auth_headers(self) -> dict[str, str]: ...

    @abc.abstractmethod
    async def get_vm_specs(self, vm_id: str) -> VMSpecs | None: ...

    @abc.abstractmethod
    async def update_vm_specs(self, vm_id: str, specs: Mapping[str, Any]) -> VMActionResult: ...

    @abc.abstractmethod
    async def get_vm_logs(self, vm_id: str, lines: int = 50) -> list[str]: ...

    @abc.abstractmethod
    async def get_vm_console_url(self, vm_id: str) -> str | None: ...


class BaseProvider(VirtualizationProvider):
    """Connection state, HTTP helper, retry and rate limiting shared by concrete providers.

    Subclasses implement the ``perform_*`` hooks and never touch ``connected``
    themselves; the public ``connect``/``disconnect``/``test_connection`` wrappers own it.
    """

    def __init__(self) -> None:
        self.api_url = ""
        self.credentials: Any = None
        self.config = PanelSettings()
        self.cache = TTLCache()
        self._connected = False
        self._request_count = 0
        self._window_start = 0.0
        self._rate_lock = asyncio.Lock()
        self.logger = logging.getLogger(f"virtbot.providers.{self.type}")

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, api_url: str, credentials: Any, config: PanelSettings | None = None) -> bool:
        self.api_url = api_url.rstrip("/")
        self.credentials = credentials
        self.config = config or PanelSettings()
        self.cache.clear()
        self._connected = False

        self.logger.info("Connecting to %s at %s", self.type, self.api_url, extra={"event": "provider_connect"})
        try:
            success = await self.perform_connect()
        except VirtualizationError:
            raise
        except Exception as exc:
            raise ConnectionFailedError(f"Failed to connect: {exc}") from exc

        self._connected = bool(success)
        if self._connected:
            self.logger.info("Connected to %s", self.type, extra={"event": "provider_connected"})
        else:
            self.logger.error(
                "Failed to connect to %s at %s",
                self.type,
                self.api_url,
                extra={"event": "provider_connect_failed"},
            )
        return self._connected

    async def disconnect(self) -> None:
        if not self._connected:
            return
        try:
            await self.perform_disconnect()
        finally:
            self._connected = False
            self.cache.clear()
        self.logger.info("Disconnected from %s", self.type, extra={"event": "provider_disconnect"})

    async def test_connection(self) -> bool:
        if not self._connected:
            return False
        try:
            return await self.perform_connection_test()
        except VirtualizationError as exc:
            self.logger.warning(
                "Connection test failed for %s: %s",
                self.type,
                exc.message,
                extra={"event": "provider_health_failed", "error_code": exc.code.value},
            )
            return False

    @abc.abstractmethod
    async def perform_connect(self) -> bool: ...

    @abc.abstractmethod
    async def perform_disconnect(self) -> None: ...

    @abc.abstractmethod
    async def perform_connection_test(self) -> bool: ...

    def ensure_connected(self) -> None:
        if not self._connected or self.credentials is None:
            raise ConnectionFailedError(f"Not connected to {self.type} provider")

    @staticmethod
    def validate_vm_id(vm_id: str) -> None:
        if vm_id is None or not str(vm_id).strip():
            raise ValidationFailedError("VM ID is required")

    async def make_request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one request to the backend and return the decoded JSON body.

        Auth headers are merged under caller headers. A caller-supplied form
        Content-Type sends ``body`` urlencoded, otherwise it goes as JSON.
        """
        await self.check_rate_limit()

        request_headers = {
            "Content-Type": "application/json",
            **self.get_auth_headers(),
            **(headers or {}),
        }
        content: dict[str, Any] = {}
        if body is not None:
            if request_headers.get("Content-Type") == FORM_CONTENT_TYPE:
                content["data"] = body
            else:
                content["json"] = body

        url = f"{self.api_url}{endpoint}"
        self.logger.debug("%s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout / 1000, verify=self.config.verify_ssl
            ) as client:
                response = await client.request(
                    method, url, headers=request_headers, params=params, **content
                )
        except httpx.TimeoutException as exc:
            raise ConnectionFailedError(
                f"Request timed out after {self.config.timeout} ms"
            ) from exc
        except httpx.RequestError as exc:
            raise ConnectionFailedError(f"Request failed: {exc}") from exc

        if response.is_error:
            self._raise_for_status(response, endpoint)

        try:
            return response.json()
        except ValueError as exc:
            raise ConnectionFailedError(
                "Backend returned a non-JSON response", status_code=response.status_code
            ) from exc

    def _raise_for_status(self, response: httpx.Response, endpoint: str) -> None:
        status = response.status_code
        text = error_text(response)
        self.logger.warning(
            "%s returned HTTP %s for %s",
            self.type,
            status,
            endpoint,
            extra=http_error_extra(self.type, endpoint, response),
        )
        if status in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
            raise AuthenticationError(
                f"Authentication failed: {text}", {"status": status}
            )
        if status == HTTPStatus.NOT_FOUND:
            raise ResourceNotFoundError("Resource", endpoint)
        if status == HTTPStatus.BAD_REQUEST:
            raise ValidationFailedError(f"Validation failed: {text}", {"status": status})
        raise ConnectionFailedError(f"HTTP {status}: {text}", status_code=status)

    async def with_retry(
        self, operation: Callable[[], Awaitable[T]], retries: int | None = None
    ) -> T:
        """Run ``operation`` up to ``retries`` times, backing off ``2**attempt`` seconds.

        Only transport-level failures are retried.
        """
        max_attempts = retries if retries is not None else self.config.retries
        max_attempts = max(1, max_attempts)
        last_error: ConnectionFailedError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except ConnectionFailedError as exc:
                last_error = exc
                self.logger.warning(
                    "Attempt %s/%s failed: %s",
                    attempt,
                    max_attempts,
                    exc.message,
                    extra={"event": "provider_retry"},
                )
                if attempt < max_attempts:
                    await _sleep(2**attempt)

        assert last_error is not None
        raise last_error

    async def check_rate_limit(self) -> None:
        """Fixed-window limiter: wait out the window once ``requests`` calls were made in it."""
        limit = self.config.rate_limit
        window = limit.window / 1000
        async with self._rate_lock:
            now = _now()
            if now - self._window_start > window:
                self._request_count = 0
                self._window_start = now

            if self._request_count >= limit.requests:
                wait = window - (now - self._window_start)
                if wait > 0:
                    self.logger.debug("Rate limit reached, waiting %.3fs", wait)
                    await _sleep(wait)
                self._request_count = 0
                self._window_start = _now()

            self._request_count += 1


__all__ = ["BaseProvider", "FORM_CONTENT_TYPE", "VirtualizationProvider"]
