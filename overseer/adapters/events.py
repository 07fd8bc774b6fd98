"""Event types emitted by the session manager.

Each event corresponds to one SessionManagerCallbacks hook, wrapped
in a typed dataclass for consumers such as the CLI.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from overseer.engine.models import Entry, entry_to_dict


@dataclass
class SessionEvent:
    """Base event from the session manager."""
    event_type: str = ""


@dataclass
class EntryAdded(SessionEvent):
    """New entry, or the accumulated value of a streaming entry."""
    event_type: str = "entry"
    entry: Entry | None = None


@dataclass
class MetaUpdated(SessionEvent):
    event_type: str = "meta"
    session_id: str = ""
    model: str = ""
    total_cost_usd: float = 0.0
    num_turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    is_compacting: bool = False
    context_window: int = 0


@dataclass
class StatusChanged(SessionEvent):
    event_type: str = "status"
    status: str = ""


@dataclass
class StreamingCleared(SessionEvent):
    event_type: str = "clear_streaming"


@dataclass
class SettingsChanged(SessionEvent):
    event_type: str = "settings"
    settings: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionErrorEvent(SessionEvent):
    event_type: str = "error"
    message: str = ""


@dataclass
class SessionStarted(SessionEvent):
    event_type: str = "session_started"
    session_id: str = ""


def event_to_dict(event: SessionEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is None:
            continue
        if isinstance(val, Entry):
            val = entry_to_dict(val)
        d[f] = val
    # "event" key, matching the wire shape of other consumers
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d
