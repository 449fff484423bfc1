"""FastAPI application entry point for the VM dashboard API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse

from virtbot.api import panels, vm
from virtbot.core.config import load_config
from virtbot.logging import configure_logging
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.middleware.request_context import CorrelationIdMiddleware
from virtbot.storage.panels import init_db
from virtbot.telemetry.events import record_event

configure_logging()

logger = logging.getLogger("virtbot.app")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    manager = VirtualizationManager(config=load_config())
    app.state.manager = manager
    logger.info("Dashboard API started", extra={"providers": manager.available_providers()})
    try:
        yield
    finally:
        await manager.disconnect_all()
        logger.info("Dashboard API stopped")


app = FastAPI(
    title="VirtBot Dashboard API",
    version="0.1.0",
    docs_url=None,
    redoc_url=None,
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)
app.include_router(panels.router)
app.include_router(vm.router)
app.add_middleware(CorrelationIdMiddleware)


@app.get("/api/docs", response_class=HTMLResponse)
def swagger_ui() -> HTMLResponse:
    return get_swagger_ui_html(
        openapi_url="/api/openapi.json",
        title="VirtBot Dashboard API",
    )


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
        },
    )
    record_event(
        "request_error",
        "ERROR",
        message=str(exc),
        meta={
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "errorCode": "UNKNOWN_ERROR",
        },
    )
