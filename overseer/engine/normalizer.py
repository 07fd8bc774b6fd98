"""Stream normalizer: Claude CLI stream-json records -> entries.

Each ``--output-format stream-json`` line is one raw record. A record
maps to zero or more entries. Malformed or unknown shapes produce
nothing; the normalizer never raises on bad input.

Mutable lookup state (tool names awaiting their result, streaming
block ids by content-block index) lives in a NormalizerState owned by
one normalizer. The module keeps a single live normalizer for the
running agent; replay builds its own with create_replay_normalizer()
so the two never share registries.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .models import (
    Entry,
    ResultEntry,
    SystemEntry,
    TextEntry,
    ThinkingEntry,
    ToolCallEntry,
    ToolResultEntry,
    UserMessageEntry,
    new_entry_id,
)

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]


@dataclass
class NormalizerState:
    """Per-normalizer registries."""

    # tool_use_id -> tool name, removed once the result is seen
    tool_names: dict[str, str] = field(default_factory=dict)
    # content block index -> streaming entry id
    streaming_blocks: dict[int, str] = field(default_factory=dict)

    def reset_streaming(self) -> None:
        self.streaming_blocks.clear()

    def reset(self) -> None:
        self.tool_names.clear()
        self.streaming_blocks.clear()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _flatten_tool_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            c.get("text") for c in content
            if isinstance(c, dict) and c.get("type") == "text"
        ]
        return "\n".join(p for p in parts if isinstance(p, str) and p)
    return ""


class StreamNormalizer:
    """Maps raw stream-json records to entries.

    ``id_factory`` and ``clock`` default to uuid4 strings and the UTC
    wall clock; inject counters to get byte-identical output across
    two runs.
    """

    def __init__(
        self,
        state: NormalizerState | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.state = state or NormalizerState()
        self._new_id = id_factory or new_entry_id
        self._now = clock or _utcnow
        self._handlers: dict[str, Callable[[RawRecord], list[Entry]]] = {
            "system": self._system,
            "assistant": self._assistant,
            "user": self._user,
            "result": self._result,
            "stream_event": self._stream_event,
        }

    def __call__(self, raw: RawRecord) -> list[Entry]:
        return self.normalize(raw)

    def normalize(self, raw: RawRecord) -> list[Entry]:
        if not isinstance(raw, dict):
            return []
        handler = self._handlers.get(raw.get("type"))  # type: ignore[arg-type]
        if handler is None:
            return []
        return handler(raw)

    def reset(self) -> None:
        self.state.reset()

    def reset_streaming(self) -> None:
        self.state.reset_streaming()

    # ── Record handlers ──────────────────────────────────────

    def _system(self, raw: RawRecord) -> list[Entry]:
        if raw.get("subtype") != "init":
            return []
        betas = raw.get("betas")
        return [SystemEntry(
            id=self._new_id(),
            timestamp=self._now(),
            session_id=raw.get("session_id") or "",
            model=raw.get("model") or "unknown",
            tools=list(_as_list(raw.get("tools"))),
            mcp_servers=list(_as_list(raw.get("mcp_servers"))),
            betas=list(betas) if isinstance(betas, list) else None,
        )]

    def _assistant(self, raw: RawRecord) -> list[Entry]:
        # A complete message supersedes whatever was streaming.
        self.state.reset_streaming()
        message = raw.get("message")
        if not isinstance(message, dict):
            return []
        content = message.get("content")

        if isinstance(content, str):
            return [TextEntry(id=self._new_id(), timestamp=self._now(), text=content)]

        entries: list[Entry] = []
        for block in _as_list(content):
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                entries.append(TextEntry(
                    id=self._new_id(),
                    timestamp=self._now(),
                    text=block.get("text") or "",
                ))
            elif block_type == "thinking":
                entries.append(ThinkingEntry(
                    id=self._new_id(),
                    timestamp=self._now(),
                    text=block.get("thinking") or "",
                ))
            elif block_type == "tool_use":
                tool_use_id = block.get("id") or ""
                tool_name = block.get("name") or "unknown"
                self.state.tool_names[tool_use_id] = tool_name
                tool_input = block.get("input")
                entries.append(ToolCallEntry(
                    id=self._new_id(),
                    timestamp=self._now(),
                    tool_name=tool_name,
                    tool_use_id=tool_use_id,
                    input=tool_input if isinstance(tool_input, dict) else {},
                ))
        return entries

    def _user(self, raw: RawRecord) -> list[Entry]:
        message = raw.get("message")
        if not isinstance(message, dict):
            return []
        content = message.get("content")
        synthetic = bool(raw.get("isSynthetic"))

        if isinstance(content, str):
            if synthetic:
                return []
            return [UserMessageEntry(id=self._new_id(), timestamp=self._now(), text=content)]

        if not isinstance(content, list):
            return []

        entries: list[Entry] = []
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "tool_result":
                tool_use_id = block.get("tool_use_id") or ""
                # Resolve at most once.
                tool_name = self.state.tool_names.pop(tool_use_id, "unknown")
                entries.append(ToolResultEntry(
                    id=self._new_id(),
                    timestamp=self._now(),
                    tool_use_id=tool_use_id,
                    tool_name=tool_name,
                    content=_flatten_tool_content(block.get("content")),
                    is_error=block.get("is_error") is True,
                ))
            elif block_type == "text" and not synthetic:
                entries.append(UserMessageEntry(
                    id=self._new_id(),
                    timestamp=self._now(),
                    text=block.get("text") or "",
                ))

        fallback = raw.get("tool_use_result")
        if not entries and fallback:
            entries.append(ToolResultEntry(
                id=self._new_id(),
                timestamp=self._now(),
                tool_use_id="",
                tool_name="unknown",
                content=(
                    fallback if isinstance(fallback, str)
                    else json.dumps(fallback, indent=2, ensure_ascii=False)
                ),
            ))
        return entries

    def _result(self, raw: RawRecord) -> list[Entry]:
        errors = raw.get("errors")
        result = raw.get("result")
        return [ResultEntry(
            id=self._new_id(),
            timestamp=self._now(),
            subtype=raw.get("subtype") or "unknown",
            total_cost_usd=raw.get("total_cost_usd") or 0.0,
            num_turns=raw.get("num_turns") or 0,
            duration_ms=raw.get("duration_ms") or 0,
            is_error=raw.get("is_error") is True,
            result=result if isinstance(result, str) else None,
            errors=list(errors) if isinstance(errors, list) else None,
        )]

    def _stream_event(self, raw: RawRecord) -> list[Entry]:
        event = raw.get("event")
        if not isinstance(event, dict):
            return []
        event_type = event.get("type")
        index = event.get("index")

        if event_type == "content_block_start":
            block = event.get("content_block")
            if not isinstance(block, dict):
                return []
            entry_id = self._new_id()
            self.state.streaming_blocks[index] = entry_id  # type: ignore[index]
            block_type = block.get("type")
            if block_type == "text":
                return [TextEntry(
                    id=entry_id, timestamp=self._now(),
                    text=block.get("text") or "", is_streaming=True,
                )]
            if block_type == "thinking":
                return [ThinkingEntry(
                    id=entry_id, timestamp=self._now(),
                    text=block.get("thinking") or "", is_streaming=True,
                )]
            if block_type == "tool_use":
                tool_use_id = block.get("id")
                tool_name = block.get("name")
                if tool_use_id and tool_name:
                    self.state.tool_names[tool_use_id] = tool_name
                return [ToolCallEntry(
                    id=entry_id,
                    timestamp=self._now(),
                    tool_name=tool_name or "unknown",
                    tool_use_id=tool_use_id or "",
                    input={},
                    is_streaming=True,
                )]
            return []

        if event_type == "content_block_delta":
            entry_id = self.state.streaming_blocks.get(index)  # type: ignore[arg-type]
            delta = event.get("delta")
            if entry_id is None or not isinstance(delta, dict):
                return []
            delta_type = delta.get("type")
            if delta_type == "text_delta" and delta.get("text"):
                return [TextEntry(
                    id=entry_id, timestamp=self._now(),
                    text=delta["text"], is_streaming=True,
                )]
            if delta_type == "thinking_delta" and delta.get("thinking"):
                return [ThinkingEntry(
                    id=entry_id, timestamp=self._now(),
                    text=delta["thinking"], is_streaming=True,
                )]
        return []


# ── Live instance ────────────────────────────────────────────

_live = StreamNormalizer()


def live_normalizer() -> StreamNormalizer:
    return _live


def parse_message(raw: RawRecord) -> list[Entry]:
    """Normalize *raw* with the live normalizer."""
    return _live.normalize(raw)


def reset_streaming_state() -> None:
    _live.reset_streaming()


def reset_parser_state() -> None:
    """Clear the live registries. Called whenever a new agent run starts."""
    logger.debug(
        "Resetting live normalizer (%d pending tool names, %d streaming blocks)",
        len(_live.state.tool_names), len(_live.state.streaming_blocks),
    )
    _live.reset()


def create_replay_normalizer(
    id_factory: Callable[[], str] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> StreamNormalizer:
    """Return an isolated normalizer with fresh registries."""
    return StreamNormalizer(NormalizerState(), id_factory=id_factory, clock=clock)
