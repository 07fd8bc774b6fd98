"""Plain-text rendering of entries.

Used for ``session.log`` and the CLI. Each entry kind has a registered
formatter that returns a header line and an optional body:

    @entry_formatter("my_kind")
    def _format_my_kind(entry):
        return "HEADER", "body text"
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable

from overseer.engine.models import (
    Entry,
    NotificationEntry,
    ResultEntry,
    SystemEntry,
    TextEntry,
    ThinkingEntry,
    ToolCallEntry,
    ToolResultEntry,
    UserMessageEntry,
)

TOOL_RESULT_MAX_LINES = 20
TOOL_INPUT_MAX_LENGTH = 200


# ── Helpers ──


def truncate(text: str, max_length: int) -> str:
    """Truncate text to *max_length* characters including the ``...``."""
    if len(text) <= max_length:
        return text
    return text[: max(max_length - 3, 0)] + "..."


def truncate_lines(text: str, max_lines: int) -> tuple[str, bool]:
    """Keep the first *max_lines* lines. Returns (text, was_truncated)."""
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text, False
    return "\n".join(lines[:max_lines]), True


def format_cost(usd: float) -> str:
    return f"${usd:.4f}"


def format_duration(ms: int | float) -> str:
    """Render milliseconds as ``1h 2m``, ``3m 4s`` or ``5s``."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_json(value: Any, indent: int = 2) -> str:
    try:
        return json.dumps(value, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone().strftime("%H:%M:%S")


# Input keys that best summarize a tool call, in priority order.
_SUMMARY_KEYS = ("command", "file_path", "path", "pattern", "url", "query", "description")


def summarize_tool_input(tool_input: dict[str, Any]) -> str:
    for key in _SUMMARY_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return truncate(value.replace("\n", " "), TOOL_INPUT_MAX_LENGTH)
    if not tool_input:
        return ""
    return truncate(
        json.dumps(tool_input, ensure_ascii=False, default=str),
        TOOL_INPUT_MAX_LENGTH,
    )


# ── Registry ──

_FORMATTERS: dict[str, Callable[[Any], tuple[str, str]]] = {}


def entry_formatter(kind: str):
    """Decorator to register a formatter for an entry kind."""

    def decorator(fn: Callable[[Any], tuple[str, str]]):
        _FORMATTERS[kind] = fn
        return fn

    return decorator


def format_entry_parts(entry: Entry) -> tuple[str, str]:
    """Return (header, body) for *entry*."""
    formatter = _FORMATTERS.get(entry.kind)
    if formatter is None:
        return entry.kind.upper() or "ENTRY", ""
    return formatter(entry)


def format_entry(entry: Entry) -> str:
    """Render one entry as a ``session.log`` block."""
    header, body = format_entry_parts(entry)
    block = f"[{format_timestamp(entry.timestamp)}] {header}"
    if body:
        indented = "\n".join(f"  {line}" for line in body.split("\n"))
        block = f"{block}\n{indented}"
    return block + "\n"


# ── Formatters ──


@entry_formatter("system")
def _format_system(entry: SystemEntry) -> tuple[str, str]:
    servers = ", ".join(
        str(s.get("name", "?")) for s in entry.mcp_servers if isinstance(s, dict)
    )
    body = f"tools: {len(entry.tools)}"
    if servers:
        body += f"\nmcp: {servers}"
    return f"SESSION {entry.session_id} (model: {entry.model})", body


@entry_formatter("thinking")
def _format_thinking(entry: ThinkingEntry) -> tuple[str, str]:
    return "THINKING", entry.text


@entry_formatter("text")
def _format_text(entry: TextEntry) -> tuple[str, str]:
    return "ASSISTANT", entry.text


@entry_formatter("tool_call")
def _format_tool_call(entry: ToolCallEntry) -> tuple[str, str]:
    summary = summarize_tool_input(entry.input)
    header = f"TOOL {entry.tool_name}"
    return (f"{header}: {summary}" if summary else header), ""


@entry_formatter("tool_result")
def _format_tool_result(entry: ToolResultEntry) -> tuple[str, str]:
    body, truncated = truncate_lines(entry.content, TOOL_RESULT_MAX_LINES)
    if truncated:
        body += "\n..."
    label = "ERROR" if entry.is_error else "RESULT"
    return f"{label} {entry.tool_name}", body


@entry_formatter("user_message")
def _format_user_message(entry: UserMessageEntry) -> tuple[str, str]:
    return "USER", entry.text


@entry_formatter("result")
def _format_result(entry: ResultEntry) -> tuple[str, str]:
    header = (
        f"DONE {entry.subtype} | cost {format_cost(entry.total_cost_usd)}"
        f" | turns {entry.num_turns} | {format_duration(entry.duration_ms)}"
    )
    lines = []
    if entry.result:
        lines.append(entry.result)
    for err in entry.errors or []:
        lines.append(f"error: {err}")
    return header, "\n".join(lines)


@entry_formatter("notification")
def _format_notification(entry: NotificationEntry) -> tuple[str, str]:
    return f"NOTICE {entry.text}", ""
