"""Websocket relay between a browser noVNC client and the hypervisor console."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import websockets
from fastapi import WebSocket
from starlette.websockets import WebSocketState
from websockets.asyncio.client import connect as ws_connect

logger = logging.getLogger("virtbot.api.vnc")

Frame = bytes | str

CONSOLE_PATH_PREFIX = "/api2/json/nodes/"
_DEFAULT_PORTS = {"http": 80, "ws": 80, "https": 443, "wss": 443}


def _endpoint(url: str) -> tuple[str, int | None]:
    parts = urlsplit(url)
    return (parts.hostname or "").lower(), parts.port or _DEFAULT_PORTS.get(parts.scheme)


def is_console_url(url: str, api_url: str) -> bool:
    """True if ``url`` is a console websocket on the same host and port as the panel API.

    The panel's auth headers travel with the upstream handshake, so anything
    else is refused.
    """
    try:
        target = urlsplit(url)
        if target.scheme not in ("ws", "wss"):
            return False
        if _endpoint(url) != _endpoint(api_url) or not target.hostname:
            return False
    except ValueError:
        return False
    segments = target.path.split("/")
    return target.path.startswith(CONSOLE_PATH_PREFIX) and ".." not in segments


def _ssl_context(url: str, verify: bool) -> ssl.SSLContext | None:
    if not url.startswith("wss://"):
        return None
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class VNCRelay:
    """Pump frames both ways between ``client`` and an upstream console websocket.

    Client frames received before the upstream handshake completes are queued
    and flushed in order once it is open.
    """

    def __init__(
        self,
        client: WebSocket,
        upstream_url: str,
        headers: Mapping[str, str],
        *,
        verify_ssl: bool = True,
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        self._client = client
        self._upstream_url = upstream_url
        self._headers = dict(headers)
        self._verify_ssl = verify_ssl
        self._connect = connect
        self._upstream: Any = None
        self._pending: list[Frame] = []

    @property
    def pending(self) -> list[Frame]:
        return list(self._pending)

    async def _pump_client(self) -> None:
        while True:
            message = await self._client.receive()
            if message["type"] == "websocket.disconnect":
                return
            frame = message.get("bytes")
            if frame is None:
                frame = message.get("text")
            if frame is None:
                continue
            if self._upstream is None:
                self._pending.append(frame)
            else:
                await self._upstream.send(frame)

    async def _pump_upstream(self, upstream: Any) -> None:
        try:
            async for frame in upstream:
                if isinstance(frame, bytes):
                    await self._client.send_bytes(frame)
                else:
                    await self._client.send_text(frame)
        except websockets.ConnectionClosed:
            return

    async def run(self) -> None:
        await self._client.accept()
        client_task = asyncio.create_task(self._pump_client())
        try:
            connect_kwargs: dict[str, Any] = {"additional_headers": self._headers, "max_size": None}
            context = _ssl_context(self._upstream_url, self._verify_ssl)
            if context is not None:
                connect_kwargs["ssl"] = context
            async with self._connect(self._upstream_url, **connect_kwargs) as upstream:
                logger.info("Console upstream open", extra={"queued": len(self._pending)})
                while self._pending:
                    await upstream.send(self._pending.pop(0))
                self._upstream = upstream

                upstream_task = asyncio.create_task(self._pump_upstream(upstream))
                done, pending = await asyncio.wait(
                    {client_task, upstream_task}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()
                for task in done:
                    if task.exception() is not None:
                        logger.warning("Console relay pump failed", exc_info=task.exception())
        except (OSError, websockets.WebSocketException) as exc:
            logger.warning("Console upstream connection failed: %s", exc, extra={"event": "vnc_upstream_failed"})
        finally:
            client_task.cancel()
            self._upstream = None
            if self._client.client_state != WebSocketState.DISCONNECTED:
                try:
                    await self._client.close()
                except RuntimeError:
                    logger.debug("Console client already closed")


__all__ = ["CONSOLE_PATH_PREFIX", "VNCRelay", "is_console_url"]
