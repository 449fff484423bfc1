"""Storage helpers for virtualization panels."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from virtbot.providers.models import (
    PanelConfig,
    PanelSettings,
    dump_credentials,
    parse_credentials,
)

from . import crypto
from .database import Base, engine, session_scope
from .models import VirtualizationPanel

_UNSET: Any = object()


def init_db() -> None:
    """Create tables if they do not already exist."""
    Base.metadata.create_all(bind=engine)


def _encode_credentials(credentials: Any) -> str:
    return crypto.encrypt(json.dumps(dump_credentials(credentials)))


def _encode_settings(settings: PanelSettings | None) -> str | None:
    if settings is None:
        return None
    return json.dumps(settings.model_dump(exclude_unset=True))


def _to_config(row: VirtualizationPanel) -> PanelConfig:
    credentials = parse_credentials(json.loads(crypto.decrypt(row.credentials)))
    settings = PanelSettings.model_validate(json.loads(row.config)) if row.config else None
    return PanelConfig(
        id=row.id,
        guild_id=row.guild_id,
        name=row.name or f"Proxmox-{row.id}",
        type=row.type,
        api_url=row.api_url,
        credentials=credentials,
        config=settings,
        active=bool(row.active),
        is_default=bool(row.is_default),
    )


def list_panels_by_guild(guild_id: str, *, active_only: bool = False) -> list[PanelConfig]:
    with session_scope() as session:
        stmt = select(VirtualizationPanel).where(VirtualizationPanel.guild_id == guild_id)
        if active_only:
            stmt = stmt.where(VirtualizationPanel.active.is_(True))
        rows = session.scalars(stmt.order_by(VirtualizationPanel.id)).all()
        return [_to_config(row) for row in rows]


def get_panel(panel_id: int) -> PanelConfig | None:
    with session_scope() as session:
        row = session.get(VirtualizationPanel, panel_id)
        return _to_config(row) if row else None


def find_panel_by_name(guild_id: str, name: str) -> PanelConfig | None:
    with session_scope() as session:
        row = session.scalar(
            select(VirtualizationPanel).where(
                VirtualizationPanel.guild_id == guild_id,
                VirtualizationPanel.name == name,
            )
        )
        return _to_config(row) if row else None


def count_panels(guild_id: str) -> int:
    with session_scope() as session:
        return int(
            session.scalar(
                select(func.count())
                .select_from(VirtualizationPanel)
                .where(VirtualizationPanel.guild_id == guild_id)
            )
            or 0
        )


def create_panel(
    *,
    guild_id: str,
    name: str,
    type: str,
    api_url: str,
    credentials: Any,
    config: PanelSettings | None = None,
    is_default: bool = False,
) -> PanelConfig:
    """Insert a panel. A default panel replaces the guild's previous default atomically.

    A duplicate ``(guild_id, name)`` raises ``IntegrityError`` and leaves the guild untouched.
    """
    row = VirtualizationPanel(
        guild_id=guild_id,
        name=name,
        type=type,
        api_url=api_url,
        credentials=_encode_credentials(credentials),
        config=_encode_settings(config),
        active=True,
        is_default=is_default,
    )
    with session_scope() as session:
        if is_default:
            _clear_default(session, guild_id)
        session.add(row)
        session.flush()
        return _to_config(row)


def update_panel(
    panel_id: int,
    *,
    name: str | None = None,
    api_url: str | None = None,
    credentials: Any = None,
    config: Any = _UNSET,
    is_default: bool | None = None,
) -> PanelConfig | None:
    """Apply the given changes; ``None`` leaves a field untouched. Returns ``None`` if missing."""
    with session_scope() as session:
        row = session.get(VirtualizationPanel, panel_id)
        if row is None:
            return None
        if name is not None:
            row.name = name
        if api_url is not None:
            row.api_url = api_url
        if credentials is not None:
            row.credentials = _encode_credentials(credentials)
        if config is not _UNSET:
            row.config = _encode_settings(config)
        if is_default:
            _clear_default(session, row.guild_id, exclude_id=row.id)
        if is_default is not None:
            row.is_default = is_default
        session.flush()
        return _to_config(row)


def set_panel_active(panel_id: int, active: bool) -> bool:
    with session_scope() as session:
        result = session.execute(
            update(VirtualizationPanel)
            .where(VirtualizationPanel.id == panel_id)
            .values(active=active)
        )
        return bool(result.rowcount)


def _clear_default(session: Session, guild_id: str, exclude_id: int | None = None) -> int:
    """Unset ``is_default`` on the guild's other panels inside the caller's transaction."""
    stmt = update(VirtualizationPanel).where(
        VirtualizationPanel.guild_id == guild_id,
        VirtualizationPanel.is_default.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(VirtualizationPanel.id != exclude_id)
    result = session.execute(stmt.values(is_default=False))
    return int(result.rowcount or 0)


def delete_panel(panel_id: int) -> bool:
    with session_scope() as session:
        row = session.get(VirtualizationPanel, panel_id)
        if row is None:
            return False
        session.delete(row)
        return True


__all__ = [
    "count_panels",
    "create_panel",
    "delete_panel",
    "find_panel_by_name",
    "get_panel",
    "init_db",
    "list_panels_by_guild",
    "set_panel_active",
    "update_panel",
]
