"""Core data models for the session engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.

Entries form a tagged union discriminated by ``kind``. Each variant
is a dataclass with a fixed ``kind`` default, so consumers dispatch
with ``isinstance`` and serializers can rely on the discriminator.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    """Agent lifecycle states. See lifecycle.py for transition rules."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    DONE = "done"
    ERROR = "error"


class EntryKind(str, Enum):
    SYSTEM = "system"
    THINKING = "thinking"
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    USER_MESSAGE = "user_message"
    RESULT = "result"
    NOTIFICATION = "notification"


def new_entry_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Entry:
    """Base entry: one UI-displayable unit of agent activity."""
    id: str = field(default_factory=new_entry_id)
    timestamp: datetime = field(default_factory=_utcnow)
    kind: str = ""


@dataclass
class SystemEntry(Entry):
    kind: str = EntryKind.SYSTEM.value
    session_id: str = ""
    model: str = "unknown"
    tools: list[str] = field(default_factory=list)
    mcp_servers: list[dict[str, Any]] = field(default_factory=list)
    betas: list[str] | None = None


@dataclass
class ThinkingEntry(Entry):
    kind: str = EntryKind.THINKING.value
    text: str = ""
    is_streaming: bool = False


@dataclass
class TextEntry(Entry):
    kind: str = EntryKind.TEXT.value
    text: str = ""
    is_streaming: bool = False


@dataclass
class ToolCallEntry(Entry):
    kind: str = EntryKind.TOOL_CALL.value
    tool_name: str = "unknown"
    tool_use_id: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    # Announced by a stream content_block_start; replaced by the
    # complete assistant record.
    is_streaming: bool = False


@dataclass
class ToolResultEntry(Entry):
    kind: str = EntryKind.TOOL_RESULT.value
    tool_use_id: str = ""
    tool_name: str = "unknown"
    content: str = ""
    is_error: bool = False


@dataclass
class UserMessageEntry(Entry):
    kind: str = EntryKind.USER_MESSAGE.value
    text: str = ""


@dataclass
class ResultEntry(Entry):
    kind: str = EntryKind.RESULT.value
    subtype: str = "unknown"
    total_cost_usd: float = 0.0
    num_turns: int = 0
    duration_ms: int = 0
    is_error: bool = False
    result: str | None = None
    errors: list[str] | None = None


@dataclass
class NotificationEntry(Entry):
    kind: str = EntryKind.NOTIFICATION.value
    text: str = ""


# Text-bearing variants that may arrive as streaming deltas.
StreamableEntry = TextEntry | ThinkingEntry

_ENTRY_MAP: dict[str, type[Entry]] = {
    EntryKind.SYSTEM.value: SystemEntry,
    EntryKind.THINKING.value: ThinkingEntry,
    EntryKind.TEXT.value: TextEntry,
    EntryKind.TOOL_CALL.value: ToolCallEntry,
    EntryKind.TOOL_RESULT.value: ToolResultEntry,
    EntryKind.USER_MESSAGE.value: UserMessageEntry,
    EntryKind.RESULT.value: ResultEntry,
    EntryKind.NOTIFICATION.value: NotificationEntry,
}


def is_streaming_entry(entry: Entry) -> bool:
    """True for in-flight stream entries (text, thinking, or announced tool calls)."""
    if isinstance(entry, (TextEntry, ThinkingEntry, ToolCallEntry)):
        return entry.is_streaming
    return False


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    """Convert an entry dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in fields(entry):
        val = getattr(entry, f.name)
        if val is None:
            continue
        if isinstance(val, datetime):
            val = val.isoformat()
        d[f.name] = val
    return d


def dict_to_entry(data: dict[str, Any]) -> Entry:
    """Convert a serialized entry dict back into its typed dataclass."""
    cls = _ENTRY_MAP.get(str(data.get("kind", "")), Entry)
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    ts = filtered.get("timestamp")
    if isinstance(ts, str):
        parsed = datetime.fromisoformat(ts)
        filtered["timestamp"] = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return cls(**filtered)


@dataclass
class SessionMeta:
    """Aggregated metadata for the current agent session."""
    session_id: str
    model: str
    tools: list[str] = field(default_factory=list)
    mcp_servers: list[dict[str, Any]] = field(default_factory=list)
    total_cost_usd: float = 0.0
    num_turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    is_compacting: bool = False
    context_window: int = 0
    supports_input: bool = True


@dataclass
class AutoResumeState:
    """Snapshot of the auto-resume control loop."""
    enabled: bool = False
    timeout_minutes: float = 0
    started_at: datetime | None = None
    stopping: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "timeout_minutes": self.timeout_minutes,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "stopping": self.stopping,
        }


@dataclass
class RuntimeSettings:
    """Settings snapshot pushed to observers on every auto-resume transition."""
    auto_resume: AutoResumeState

    def to_dict(self) -> dict[str, Any]:
        return {"auto_resume": self.auto_resume.to_dict()}


@dataclass
class SessionSummary:
    """Lightweight listing row for a logged session."""
    session_id: str
    model: str
    total_cost_usd: float = 0.0
    num_turns: int = 0
    duration_ms: int = 0
    started_at: datetime | None = None
    last_modified: datetime | None = None
    entry_count: int = 0
    last_message: str | None = None
