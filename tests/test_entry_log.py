"""Tests for the on-disk entry log."""

import json
from datetime import datetime, timezone

from overseer.engine.models import NotificationEntry, TextEntry, ToolCallEntry
from overseer.shared.services.entry_log import RAW_LOG_NAME, SESSION_LOG_NAME, EntryLog

SID = "3f2c1a9e-8b7d-4c6e-9f01-23456789abcd"
TS = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def _read_raw(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_buffers_until_initialized(tmp_path):
    log = EntryLog()
    log.log_raw({"type": "user", "n": 1})
    log.log_entry(TextEntry(timestamp=TS, text="before init"))
    assert not log.initialized
    assert not (tmp_path / SID).exists()

    log.initialize(SID, tmp_path)
    log.log_raw({"type": "system", "n": 2})
    log.close()

    assert _read_raw(tmp_path / SID / RAW_LOG_NAME) == [
        {"type": "user", "n": 1},
        {"type": "system", "n": 2},
    ]
    text = (tmp_path / SID / SESSION_LOG_NAME).read_text(encoding="utf-8")
    assert "ASSISTANT" in text
    assert "  before init" in text


def test_appends_across_initializations(tmp_path):
    log = EntryLog()
    log.initialize(SID, tmp_path)
    log.log_raw({"n": 1})
    log.close()

    log.initialize(SID, tmp_path)
    log.log_raw({"n": 2})
    log.close()

    assert _read_raw(tmp_path / SID / RAW_LOG_NAME) == [{"n": 1}, {"n": 2}]


def test_unserializable_record_is_dropped(tmp_path):
    log = EntryLog()
    log.initialize(SID, tmp_path)
    log.log_raw({"bad": object()})
    log.log_raw({"ok": True})
    log.close()

    assert _read_raw(tmp_path / SID / RAW_LOG_NAME) == [{"ok": True}]


def test_write_order_preserved(tmp_path):
    log = EntryLog()
    log.initialize(SID, tmp_path)
    for i in range(50):
        log.log_raw({"i": i})
    log.close()
    assert [r["i"] for r in _read_raw(tmp_path / SID / RAW_LOG_NAME)] == list(range(50))


def test_session_log_blocks(tmp_path):
    log = EntryLog()
    log.initialize(SID, tmp_path)
    log.log_entry(ToolCallEntry(timestamp=TS, tool_name="Bash", input={"command": "ls -la"}))
    log.log_entry(NotificationEntry(timestamp=TS, text="Interrupted"))
    log.close()

    text = (tmp_path / SID / SESSION_LOG_NAME).read_text(encoding="utf-8")
    assert "TOOL Bash: ls -la" in text
    assert "NOTICE Interrupted" in text
    assert text.endswith("\n")


def test_close_is_idempotent(tmp_path):
    log = EntryLog()
    log.close()
    log.initialize(SID, tmp_path)
    log.close()
    log.close()
    assert not log.initialized


def test_unwritable_directory_does_not_raise(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    log = EntryLog()
    log.initialize(SID, blocker)
    log.log_raw({"n": 1})
    log.log_entry(TextEntry(text="lost"))
    log.close()
    assert log.session_dir is None
