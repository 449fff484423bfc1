"""Bind a correlation id to every dashboard request."""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from virtbot.logging import log_context, new_correlation_id

logger = logging.getLogger("virtbot.http")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse an inbound ``x-correlation-id`` header or mint one, and echo it back."""

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get("x-correlation-id") or new_correlation_id()
        request.state.correlation_id = correlation_id
        start = time.perf_counter()
        with log_context(correlation_id=correlation_id):
            response = await call_next(request)
            logger.info(
                "%s %s -> %s",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "event": "http_request",
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
        response.headers.setdefault("x-correlation-id", correlation_id)
        return response
