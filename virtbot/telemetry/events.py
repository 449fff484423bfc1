"""Audit event recording for VM actions, panel changes and request failures."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select

from virtbot.logging import get_correlation_id
from virtbot.storage.database import session_scope
from virtbot.storage.models import AuditEvent

logger = logging.getLogger("virtbot.events")

_EVENTS_ENABLED = os.getenv("EVENTS_ENABLED", "true").lower() in {"1", "true", "yes"}

_RETENTION_DAYS = 7


def _current_retention_cutoff() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=_RETENTION_DAYS)


def _prune_old_events(session) -> None:
    session.execute(delete(AuditEvent).where(AuditEvent.ts < _current_retention_cutoff()))


def record_event(
    kind: str,
    level: str,
    *,
    message: str | None = None,
    meta: Dict[str, Any] | None = None,
    guild_id: str | None = None,
    panel_id: int | None = None,
    vm_id: str | None = None,
    user_id: str | None = None,
    error_code: str | None = None,
) -> None:
    """Persist an audit event. Storage failures are logged, never raised."""
    if not _EVENTS_ENABLED:
        return

    event = AuditEvent(
        ts=datetime.now(timezone.utc),
        level=level.upper(),
        kind=kind,
        correlation_id=get_correlation_id(),
        guild_id=guild_id,
        panel_id=panel_id,
        vm_id=vm_id,
        user_id=user_id,
        error_code=error_code,
        message=message[:512] if message else None,
        meta=json.dumps(meta, ensure_ascii=True, default=str) if meta else None,
    )

    try:
        with session_scope() as session:
            session.add(event)
            _prune_old_events(session)
    except Exception:
        logger.exception(
            "Failed to record event", extra={"event": "event_persist_error", "kind": kind}
        )


def list_recent_events(limit: int = 50, guild_id: str | None = None) -> List[Dict[str, Any]]:
    """Return recent events newest first, optionally scoped to one guild."""
    if not _EVENTS_ENABLED:
        return []

    with session_scope() as session:
        _prune_old_events(session)

        stmt = select(AuditEvent).where(AuditEvent.ts >= _current_retention_cutoff())
        if guild_id is not None:
            stmt = stmt.where(AuditEvent.guild_id == guild_id)
        rows = session.scalars(stmt.order_by(AuditEvent.ts.desc()).limit(limit)).all()

    events: List[Dict[str, Any]] = []
    for row in rows:
        meta_value: Optional[Dict[str, Any] | str]
        if row.meta:
            try:
                meta_value = json.loads(row.meta)
            except json.JSONDecodeError:
                meta_value = row.meta
        else:
            meta_value = None

        events.append(
            {
                "id": row.id,
                "timestamp": row.ts.isoformat() if row.ts else None,
                "level": row.level,
                "kind": row.kind,
                "correlation_id": row.correlation_id,
                "guild_id": row.guild_id,
                "panel_id": row.panel_id,
                "vm_id": row.vm_id,
                "user_id": row.user_id,
                "error_code": row.error_code,
                "message": row.message,
                "meta": meta_value,
            }
        )
    return events


__all__ = ["list_recent_events", "record_event"]
