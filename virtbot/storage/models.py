"""ORM models for panels, live monitors and audit events."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base


class VirtualizationPanel(Base):
    __tablename__ = "virtualization_panels"
    __table_args__ = (
        UniqueConstraint("guild_id", "name", name="uq_virtualization_panels_guild_name"),
        Index("ix_virtualization_panels_guild", "guild_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    guild_id = Column(String(32), nullable=False)
    name = Column(String(100), nullable=False)
    type = Column(String(32), nullable=False, default="proxmox")
    api_url = Column(String(512), nullable=False)
    # Fernet token of the JSON-encoded credentials union.
    credentials = Column(Text, nullable=False)
    config = Column(Text)
    active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class VMMonitor(Base):
    __tablename__ = "vm_monitors"
    __table_args__ = (Index("ix_vm_monitors_panel", "panel_id"),)

    message_id = Column(String(32), primary_key=True)
    guild_id = Column(String(32), nullable=False)
    channel_id = Column(String(32), nullable=False)
    panel_id = Column(Integer, ForeignKey("virtualization_panels.id"), nullable=False)
    vm_id = Column(String(32), nullable=False)
    user_id = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AuditEvent(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level = Column(String(16), nullable=False)
    kind = Column(String(64), nullable=False)
    correlation_id = Column(String(64))
    guild_id = Column(String(32))
    panel_id = Column(Integer)
    vm_id = Column(String(32))
    user_id = Column(String(32))
    error_code = Column(String(64))
    message = Column(String(512))
    meta = Column(Text)

    __table_args__ = (
        Index("ix_events_ts", "ts"),
        Index("ix_events_guild_ts", "guild_id", "ts"),
    )
