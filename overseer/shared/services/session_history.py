"""Session listing and replay from raw logs.

Both operations stream ``raw.jsonl`` line by line, so memory use does
not grow with the size of a session. Replay runs the records through an
isolated normalizer, never the live one.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from overseer.engine.errors import InvalidSessionIdError, SessionNotFoundError
from overseer.engine.models import (
    Entry,
    ResultEntry,
    SessionMeta,
    SessionSummary,
    SystemEntry,
    is_streaming_entry,
)
from overseer.engine.normalizer import create_replay_normalizer
from overseer.shared.services.entry_log import RAW_LOG_NAME

logger = logging.getLogger(__name__)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
LAST_MESSAGE_MAX_LENGTH = 120


def is_session_id(value: str) -> bool:
    return bool(UUID_RE.match(value))


def _iter_records(path: Path) -> Iterator[dict[str, Any]]:
    """Yield parsed JSON objects from *path*, skipping blank and bad lines."""
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(record, dict):
                yield record


def _usage_tokens(record: dict[str, Any]) -> tuple[int, int | None] | None:
    """Input (incl. cache) and output token counts from an assistant record."""
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None
    total_input = sum(
        int(usage.get(key) or 0)
        for key in (
            "input_tokens",
            "cache_creation_input_tokens",
            "cache_read_input_tokens",
        )
    )
    output = usage.get("output_tokens")
    return total_input, (int(output) if output is not None else None)


def _first_assistant_text(record: dict[str, Any]) -> str | None:
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return None
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = (block.get("text") or "").strip()
        if not text:
            continue
        if len(text) <= LAST_MESSAGE_MAX_LENGTH:
            return text
        return text[:LAST_MESSAGE_MAX_LENGTH] + "..."
    return None


# ── Listing ──


def build_session_summary(raw_path: Path, dir_name: str) -> SessionSummary | None:
    """Summarize one raw log. Returns None when it has no records."""
    stat = raw_path.stat()
    session_id: str | None = None
    model: str | None = None
    last_result: dict[str, Any] | None = None
    last_message: str | None = None
    line_count = 0
    parsed_any = False

    with open(raw_path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            line_count += 1
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            parsed_any = True
            if session_id is None and record.get("session_id"):
                session_id = str(record["session_id"])
            if model is None and record.get("model"):
                model = str(record["model"])
            record_type = record.get("type")
            if record_type == "result":
                last_result = record
            elif record_type == "assistant":
                text = _first_assistant_text(record)
                if text:
                    last_message = text

    if line_count == 0 or not parsed_any:
        return None

    result = last_result or {}
    return SessionSummary(
        session_id=session_id or dir_name,
        model=model or "unknown",
        total_cost_usd=result.get("total_cost_usd") or 0.0,
        num_turns=result.get("num_turns") or 0,
        duration_ms=result.get("duration_ms") or 0,
        # Creation time is not portable; ctime is the closest on Linux.
        started_at=datetime.fromtimestamp(
            getattr(stat, "st_birthtime", stat.st_ctime), tz=timezone.utc
        ),
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        entry_count=line_count,
        last_message=last_message,
    )


def list_sessions(log_dir: str | Path) -> list[SessionSummary]:
    """Summaries of every logged session, most recently modified first."""
    root = Path(log_dir)
    try:
        children = list(root.iterdir())
    except OSError:
        return []

    summaries: list[SessionSummary] = []
    for child in children:
        if not child.is_dir() or not is_session_id(child.name):
            continue
        raw_path = child / RAW_LOG_NAME
        if not raw_path.is_file():
            continue
        try:
            summary = build_session_summary(raw_path, child.name)
        except OSError as exc:
            logger.debug("Skipping unreadable session %s: %s", child.name, exc)
            continue
        if summary is not None:
            summaries.append(summary)

    summaries.sort(key=lambda s: s.last_modified or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
    return summaries


# ── Replay ──


def replay_session(
    log_dir: str | Path,
    session_id: str,
    *,
    id_factory: Callable[[], str] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> tuple[list[Entry], SessionMeta | None]:
    """Rebuild entries and metadata for *session_id* from its raw log.

    Raises InvalidSessionIdError for a malformed id and
    SessionNotFoundError when no raw log exists. An empty or fully
    malformed log is a valid, empty result.
    """
    if not is_session_id(session_id):
        raise InvalidSessionIdError(session_id)
    raw_path = Path(log_dir) / session_id / RAW_LOG_NAME
    if not raw_path.is_file():
        raise SessionNotFoundError(session_id, str(raw_path))

    normalize = create_replay_normalizer(id_factory=id_factory, clock=clock)
    entries: list[Entry] = []
    meta: SessionMeta | None = None

    for record in _iter_records(raw_path):
        if record.get("type") == "assistant" and meta is not None:
            usage = _usage_tokens(record)
            if usage is not None:
                meta.input_tokens = usage[0]
                if usage[1] is not None:
                    meta.output_tokens = usage[1]

        for entry in normalize(record):
            # Streaming placeholders are superseded by the complete
            # assistant record, as in a live session.
            if is_streaming_entry(entry):
                continue
            entries.append(entry)
            if isinstance(entry, SystemEntry):
                meta = SessionMeta(
                    session_id=entry.session_id,
                    model=entry.model,
                    tools=list(entry.tools),
                    mcp_servers=list(entry.mcp_servers),
                    total_cost_usd=meta.total_cost_usd if meta else 0.0,
                    num_turns=meta.num_turns if meta else 0,
                    input_tokens=meta.input_tokens if meta else 0,
                    output_tokens=meta.output_tokens if meta else 0,
                )
            elif isinstance(entry, ResultEntry) and meta is not None:
                meta.total_cost_usd = entry.total_cost_usd
                meta.num_turns = entry.num_turns

    logger.debug("Replayed session %s: %d entries", session_id, len(entries))
    return entries, meta
