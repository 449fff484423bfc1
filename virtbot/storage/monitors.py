"""Storage helpers for live VM monitor bindings."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select

from .database import session_scope
from .models import VMMonitor


def _to_dict(row: VMMonitor) -> dict[str, Any]:
    return {
        "guild_id": row.guild_id,
        "channel_id": row.channel_id,
        "message_id": row.message_id,
        "panel_id": row.panel_id,
        "vm_id": row.vm_id,
        "user_id": row.user_id,
    }


def list_monitors() -> list[dict[str, Any]]:
    with session_scope() as session:
        rows = session.scalars(select(VMMonitor).order_by(VMMonitor.created_at, VMMonitor.message_id)).all()
        return [_to_dict(row) for row in rows]


def create_monitor(
    *,
    guild_id: str,
    channel_id: str,
    message_id: str,
    panel_id: int,
    vm_id: str,
    user_id: str,
) -> None:
    """Insert a binding; a duplicate ``message_id`` raises ``IntegrityError``."""
    with session_scope() as session:
        session.add(
            VMMonitor(
                guild_id=guild_id,
                channel_id=channel_id,
                message_id=message_id,
                panel_id=panel_id,
                vm_id=vm_id,
                user_id=user_id,
            )
        )


def delete_monitor(message_id: str) -> bool:
    with session_scope() as session:
        result = session.execute(delete(VMMonitor).where(VMMonitor.message_id == message_id))
        return bool(result.rowcount)


def count_by_panel(panel_id: int) -> int:
    with session_scope() as session:
        return int(
            session.scalar(
                select(func.count()).select_from(VMMonitor).where(VMMonitor.panel_id == panel_id)
            )
            or 0
        )


__all__ = ["count_by_panel", "create_monitor", "delete_monitor", "list_monitors"]
