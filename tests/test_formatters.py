"""Tests for overseer.shared.formatters.entry_text and context window sizing."""

from datetime import datetime, timezone

import pytest

from overseer.engine.context_window import CONTEXT_1M, CONTEXT_200K, get_context_window
from overseer.engine.models import (
    Entry,
    ResultEntry,
    SystemEntry,
    ToolCallEntry,
    ToolResultEntry,
)
from overseer.shared.formatters.entry_text import (
    TOOL_RESULT_MAX_LINES,
    format_cost,
    format_duration,
    format_entry,
    format_entry_parts,
    format_json,
    summarize_tool_input,
    truncate,
    truncate_lines,
)

TS = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


# ── Helpers ──


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("hello", 10) == "hello"

    def test_exact_length_unchanged(self):
        assert truncate("hello", 5) == "hello"

    def test_long_text_includes_ellipsis(self):
        assert truncate("hello world", 8) == "hello..."
        assert len(truncate("x" * 50, 20)) == 20

    def test_truncate_lines(self):
        assert truncate_lines("a\nb\nc", 5) == ("a\nb\nc", False)
        assert truncate_lines("a\nb\nc", 2) == ("a\nb", True)


class TestFormatting:
    @pytest.mark.parametrize("usd,expected", [
        (0, "$0.0000"),
        (0.01, "$0.0100"),
        (1.5, "$1.5000"),
    ])
    def test_format_cost(self, usd, expected):
        assert format_cost(usd) == expected

    @pytest.mark.parametrize("ms,expected", [
        (0, "0s"),
        (5_400, "5s"),
        (61_000, "1m 1s"),
        (3_720_000, "1h 2m"),
    ])
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected

    def test_format_json(self):
        assert format_json({"a": 1}) == '{\n  "a": 1\n}'
        assert format_json({"a": object()}).startswith("{")

    def test_summarize_tool_input_prefers_known_keys(self):
        assert summarize_tool_input({"description": "d", "command": "ls\n-la"}) == "ls -la"
        assert summarize_tool_input({"file_path": "/tmp/x.py"}) == "/tmp/x.py"
        assert summarize_tool_input({}) == ""
        assert summarize_tool_input({"n": 1}) == '{"n": 1}'


# ── Entry rendering ──


class TestEntryRendering:
    def test_system(self):
        entry = SystemEntry(timestamp=TS, session_id="s1", model="m", tools=["Bash", "Read"],
                            mcp_servers=[{"name": "github"}])
        header, body = format_entry_parts(entry)
        assert header == "SESSION s1 (model: m)"
        assert body == "tools: 2\nmcp: github"

    def test_tool_result_lines_truncated(self):
        content = "\n".join(f"line {i}" for i in range(TOOL_RESULT_MAX_LINES + 5))
        header, body = format_entry_parts(ToolResultEntry(tool_name="Bash", content=content))
        assert header == "RESULT Bash"
        assert body.endswith("\n...")
        assert len(body.split("\n")) == TOOL_RESULT_MAX_LINES + 1

    def test_tool_result_error_label(self):
        header, _ = format_entry_parts(ToolResultEntry(tool_name="Bash", is_error=True))
        assert header == "ERROR Bash"

    def test_tool_call_without_input(self):
        header, body = format_entry_parts(ToolCallEntry(tool_name="TodoWrite"))
        assert header == "TOOL TodoWrite"
        assert body == ""

    def test_result(self):
        entry = ResultEntry(subtype="success", total_cost_usd=0.01, num_turns=1,
                            duration_ms=500, result="All done", errors=["late"])
        header, body = format_entry_parts(entry)
        assert header == "DONE success | cost $0.0100 | turns 1 | 0s"
        assert body == "All done\nerror: late"

    def test_unknown_kind(self):
        assert format_entry_parts(Entry(kind="mystery")) == ("MYSTERY", "")

    def test_format_entry_indents_body(self):
        entry = ToolResultEntry(timestamp=TS, tool_name="Read", content="one\ntwo")
        block = format_entry(entry)
        lines = block.rstrip("\n").split("\n")
        assert lines[0].startswith("[") and lines[0].endswith("] RESULT Read")
        assert lines[1:] == ["  one", "  two"]
        assert block.endswith("\n")


# ── Context window ──


class TestContextWindow:
    def test_default_window(self):
        assert get_context_window("claude-opus-4") == CONTEXT_200K

    def test_one_million_beta(self):
        assert get_context_window("claude-sonnet-4", ["context-1m-2025-08-07"]) == CONTEXT_1M

    def test_unrelated_betas(self):
        assert get_context_window("claude-sonnet-4", ["interleaved-thinking"]) == CONTEXT_200K
        assert get_context_window("claude-sonnet-4", []) == CONTEXT_200K
