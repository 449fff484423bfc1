"""Logging for the dashboard and the Discord bot.

Each HTTP request, slash command or button click binds a log context holding
a correlation id plus whatever identifies the caller (guild, user, command).
A filter copies that context onto every record emitted while it is bound, so
handlers deep in the manager or providers need not pass it along.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import pathlib
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from types import MappingProxyType
from typing import Any, Iterator, Mapping

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent

DEFAULT_LOG_FILE = "logs/virtbot.jsonl"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s (cid=%(correlation_id)s)"
QUIET_LOGGERS = ("uvicorn", "httpx", "discord", "websockets")

_EMPTY: Mapping[str, Any] = MappingProxyType({})
_LOG_CONTEXT: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "virtbot_log_context", default=_EMPTY
)
_configured = False


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def current_log_context() -> Mapping[str, Any]:
    return _LOG_CONTEXT.get()


def bind_log_context(**fields: Any) -> contextvars.Token[Mapping[str, Any]]:
    """Merge ``fields`` into the current context. ``None`` values are dropped."""
    merged = dict(_LOG_CONTEXT.get())
    merged.update((key, value) for key, value in fields.items() if value is not None)
    return _LOG_CONTEXT.set(MappingProxyType(merged))


def reset_log_context(token: contextvars.Token[Mapping[str, Any]]) -> None:
    _LOG_CONTEXT.reset(token)


@contextmanager
def log_context(**fields: Any) -> Iterator[Mapping[str, Any]]:
    token = bind_log_context(**fields)
    try:
        yield _LOG_CONTEXT.get()
    finally:
        reset_log_context(token)


def set_correlation_id(correlation_id: str | None) -> contextvars.Token[Mapping[str, Any]]:
    return bind_log_context(correlation_id=correlation_id)


def reset_correlation_id(token: contextvars.Token[Mapping[str, Any]]) -> None:
    reset_log_context(token)


def get_correlation_id() -> str | None:
    return _LOG_CONTEXT.get().get("correlation_id")


class LogContextFilter(logging.Filter):
    """Copy bound context fields onto records; explicit ``extra=`` values win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _LOG_CONTEXT.get().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        if not hasattr(record, "correlation_id"):
            record.correlation_id = None
        return True


# Attributes every LogRecord carries; anything else on a record came from
# ``extra=`` or the bound context.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line with context and ``extra=`` fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_") or value is None:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _log_file_path(log_file: str | None) -> pathlib.Path:
    path = pathlib.Path(log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE))
    if not path.is_absolute():
        path = BASE_DIR.parent / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def configure_logging(console_level: str | None = None, log_file: str | None = None) -> None:
    """Install the console and rotating JSON-lines handlers on the root logger.

    ``console_level`` and ``log_file`` default to the ``LOG_LEVEL`` and
    ``LOG_FILE`` environment variables. Later calls are no-ops.
    """
    global _configured
    if _configured:
        return

    level_name = (console_level or os.getenv("LOG_LEVEL", "WARNING")).upper()
    context_filter = LogContextFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level_name, logging.WARNING))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    file_handler = RotatingFileHandler(_log_file_path(log_file), maxBytes=10_000_000, backupCount=5)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in (console_handler, file_handler):
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


__all__ = [
    "JsonFormatter",
    "LogContextFilter",
    "bind_log_context",
    "configure_logging",
    "current_log_context",
    "get_correlation_id",
    "log_context",
    "new_correlation_id",
    "reset_correlation_id",
    "reset_log_context",
    "set_correlation_id",
]
