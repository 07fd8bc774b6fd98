"""Tests for the EventBus adapter and event serialization."""

import asyncio
from datetime import datetime, timezone

import pytest

from overseer.adapters.event_bus import EventBus
from overseer.adapters.events import (
    EntryAdded,
    MetaUpdated,
    SessionStarted,
    SettingsChanged,
    StatusChanged,
    StreamingCleared,
    event_to_dict,
)
from overseer.engine.models import (
    AgentStatus,
    AutoResumeState,
    RuntimeSettings,
    SessionMeta,
    TextEntry,
)


@pytest.mark.asyncio
async def test_callbacks_publish_typed_events():
    bus = EventBus()
    callbacks = bus.make_callbacks()

    callbacks.on_session_started("s1")
    callbacks.on_status(AgentStatus.RUNNING)
    callbacks.on_entry(TextEntry(text="hi"))
    callbacks.on_meta(SessionMeta(session_id="s1", model="m", input_tokens=12, context_window=200_000))
    callbacks.on_clear_streaming()
    callbacks.on_settings_change(RuntimeSettings(auto_resume=AutoResumeState(enabled=True)))

    events = bus.drain()
    assert [type(e) for e in events] == [
        SessionStarted, StatusChanged, EntryAdded, MetaUpdated, StreamingCleared, SettingsChanged,
    ]
    assert events[1].status == "running"
    assert events[3].input_tokens == 12
    assert events[5].settings["auto_resume"]["enabled"] is True
    assert bus.drain() == []


@pytest.mark.asyncio
async def test_queue_full_drops_event():
    bus = EventBus(maxsize=1)
    bus.emit(StreamingCleared())
    bus.emit(StreamingCleared())
    assert len(bus.drain()) == 1


@pytest.mark.asyncio
async def test_consume_stops_after_close():
    bus = EventBus()
    seen = []

    async def consumer():
        async for event in bus.consume():
            seen.append(event)

    task = asyncio.create_task(consumer())
    bus.emit(StatusChanged(status="done"))
    await asyncio.sleep(0.05)
    bus.close()
    await asyncio.wait_for(task, timeout=2)

    assert [e.status for e in seen] == ["done"]
    bus.emit(StatusChanged(status="idle"))
    assert bus.drain() == []


def test_event_to_dict_serializes_entry():
    ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
    d = event_to_dict(EntryAdded(entry=TextEntry(id="e1", timestamp=ts, text="hi")))
    assert d["event"] == "entry"
    assert "event_type" not in d
    assert d["entry"] == {
        "id": "e1",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "kind": "text",
        "text": "hi",
        "is_streaming": False,
    }


def test_settings_snapshot_dict():
    started = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    settings = RuntimeSettings(auto_resume=AutoResumeState(
        enabled=True, timeout_minutes=30, started_at=started, stopping=False,
    ))
    assert settings.to_dict() == {"auto_resume": {
        "enabled": True,
        "timeout_minutes": 30,
        "started_at": "2026-01-01T12:00:00+00:00",
        "stopping": False,
    }}
