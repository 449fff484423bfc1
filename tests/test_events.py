from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from virtbot.logging import reset_correlation_id, set_correlation_id
from virtbot.storage.models import AuditEvent
from virtbot.telemetry import events

EXPECTED_EVENT_COUNT = 2


def _add_event(ts: datetime, level: str = "INFO", kind: str = "test_event", guild_id: str | None = None) -> None:
    with events.session_scope() as session:
        session.add(AuditEvent(ts=ts, level=level, kind=kind, guild_id=guild_id))


def _aware(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def test_record_event_prunes_events_past_retention(memory_db):
    now = datetime.now(timezone.utc)

    _add_event(now - timedelta(days=10))
    _add_event(now - timedelta(days=1))

    events.record_event("vm_action", "INFO", message="kept")

    with events.session_scope() as session:
        rows = session.scalars(select(AuditEvent).order_by(AuditEvent.ts)).all()

    assert len(rows) == EXPECTED_EVENT_COUNT
    assert _aware(rows[0].ts) >= events._current_retention_cutoff()


def test_record_event_stores_correlation_id_and_meta(memory_db):
    token = set_correlation_id("corr-123")
    try:
        events.record_event(
            "vm_action",
            "warning",
            message="Action restart failed",
            meta={"action": "restart"},
            guild_id="g1",
            panel_id=3,
            vm_id="100",
            user_id="u1",
            error_code="ACTION_FAILED",
        )
    finally:
        reset_correlation_id(token)

    [item] = events.list_recent_events(limit=10)

    assert item["level"] == "WARNING"
    assert item["correlation_id"] == "corr-123"
    assert item["meta"] == {"action": "restart"}
    assert (item["guild_id"], item["panel_id"], item["vm_id"]) == ("g1", 3, "100")
    assert item["error_code"] == "ACTION_FAILED"


def test_list_recent_events_filters_by_guild_and_retention(memory_db):
    now = datetime.now(timezone.utc)

    _add_event(now - timedelta(days=9), guild_id="g1")
    _add_event(now - timedelta(days=2), guild_id="g1")
    _add_event(now - timedelta(hours=6), guild_id="g1")
    _add_event(now - timedelta(hours=1), guild_id="g2")

    data = events.list_recent_events(limit=10, guild_id="g1")

    assert len(data) == EXPECTED_EVENT_COUNT
    timestamps = [_aware(datetime.fromisoformat(item["timestamp"])) for item in data]
    assert timestamps == sorted(timestamps, reverse=True)
    assert all(ts >= events._current_retention_cutoff() for ts in timestamps)


def test_record_event_swallows_storage_failures(monkeypatch):
    def broken_scope():
        raise RuntimeError("disk full")

    monkeypatch.setattr(events, "session_scope", broken_scope)

    events.record_event("vm_action", "INFO", message="lost")
