"""Append-only session log on disk.

Storage layout:
    {log_dir}/{session_id}/raw.jsonl     one raw stream-json record per line
    {log_dir}/{session_id}/session.log   human-readable entry blocks

The session id is only known once the agent reports ``system/init``,
so records written before initialize() are buffered and flushed in
order. Logging is best-effort: serialization and I/O errors are logged
at debug level and never raised.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TextIO

from overseer.engine.models import Entry
from overseer.shared.formatters.entry_text import format_entry

logger = logging.getLogger(__name__)

RAW_LOG_NAME = "raw.jsonl"
SESSION_LOG_NAME = "session.log"


class EntryLog:
    """Writes raw records and rendered entries for one session at a time."""

    def __init__(self) -> None:
        self._raw: TextIO | None = None
        self._text: TextIO | None = None
        self._buffer: list[tuple[str, Any]] = []
        self._session_dir: Path | None = None

    @property
    def initialized(self) -> bool:
        return self._session_dir is not None

    @property
    def session_dir(self) -> Path | None:
        return self._session_dir

    def initialize(self, session_id: str, log_dir: str | Path) -> None:
        """Open (append) the log files for *session_id* and flush the buffer."""
        if self._session_dir is not None:
            self._close_handles()
        session_dir = Path(log_dir) / session_id
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            self._raw = open(session_dir / RAW_LOG_NAME, "a", encoding="utf-8", buffering=1)
            self._text = open(session_dir / SESSION_LOG_NAME, "a", encoding="utf-8", buffering=1)
        except OSError as exc:
            logger.warning("Cannot open session log in %s: %s", session_dir, exc)
            self._close_handles()
        self._session_dir = session_dir
        logger.debug("Entry log initialized at %s (%d buffered)", session_dir, len(self._buffer))

        pending, self._buffer = self._buffer, []
        for kind, item in pending:
            if kind == "raw":
                self.log_raw(item)
            else:
                self.log_entry(item)

    def log_raw(self, record: Any) -> None:
        if self._session_dir is None:
            self._buffer.append(("raw", record))
            return
        if self._raw is None:
            return
        try:
            self._raw.write(json.dumps(record, ensure_ascii=False) + "\n")
        except (TypeError, ValueError, OSError) as exc:
            logger.debug("Dropped raw record: %s", exc)

    def log_entry(self, entry: Entry) -> None:
        if self._session_dir is None:
            self._buffer.append(("entry", entry))
            return
        if self._text is None:
            return
        try:
            self._text.write(format_entry(entry))
        except (TypeError, ValueError, OSError) as exc:
            logger.debug("Dropped log entry %s: %s", entry.id, exc)

    def close(self) -> None:
        """Flush and release the files. Safe to call repeatedly."""
        self._close_handles()
        self._session_dir = None

    def _close_handles(self) -> None:
        for handle in (self._raw, self._text):
            if handle is None:
                continue
            try:
                handle.close()
            except OSError as exc:
                logger.debug("Error closing session log: %s", exc)
        self._raw = None
        self._text = None
