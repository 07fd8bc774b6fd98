"""Claude CLI provider: runs ``claude --print`` in stream-json mode.

Both directions use newline-delimited JSON. The first user message is
written to stdin on spawn; further messages are written while the
process runs. stdout records are logged raw (except high-volume
``stream_event`` deltas), normalized with the live normalizer, and
forwarded to the session manager. stdin is closed after the ``result``
record so the CLI can exit on its own.

Uses asyncio.create_subprocess_exec (array-based, no shell) for safe
argument passing.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any

from ..config import SessionConfig
from ..errors import ProviderExitError, ProviderStartError
from ..normalizer import parse_message, reset_parser_state
from .base import AgentProvider, ProviderCallbacks

logger = logging.getLogger(__name__)

# stream-json lines carry whole tool results; the asyncio default
# (64 KiB) is far too small.
_STREAM_LIMIT = 64 * 1024 * 1024

RESUME_PROMPT = "Continue."


class ClaudeCliProvider(AgentProvider):
    """Provider backed by the ``claude`` command line tool."""

    def __init__(
        self,
        config: SessionConfig,
        *,
        bypass_permissions: bool | None = None,
        workspace_path: str | None = None,
    ) -> None:
        self._config = config
        self._command = config.claude_command or "claude"
        self._bypass_permissions = (
            config.dangerously_skip_permissions
            if bypass_permissions is None else bypass_permissions
        )
        self._workspace_path = workspace_path or config.workspace_path or None

        self._session_id = ""
        self._process: asyncio.subprocess.Process | None = None
        self._callbacks: ProviderCallbacks | None = None
        self._interrupting = False
        self._aborted = False
        self._initial_prompt_override: str | None = None
        self._resume_session_id: str | None = None

    @property
    def name(self) -> str:
        return "claude-cli"

    @property
    def session_id(self) -> str | None:
        return self._session_id or None

    @property
    def is_running(self) -> bool:
        return self._process is not None

    async def start(
        self,
        callbacks: ProviderCallbacks,
        initial_prompt: str | None = None,
    ) -> None:
        self._callbacks = callbacks
        self._aborted = False
        self._initial_prompt_override = initial_prompt

        resuming = self._interrupting
        self._interrupting = False

        # Stale tool names or streaming blocks must not leak across runs.
        reset_parser_state()
        logger.debug("ClaudeCliProvider.start(resuming=%s)", resuming)
        await self._run_process(resuming)

    def send_message(self, text: str) -> None:
        proc = self._process
        if proc is None or proc.stdin is None or proc.stdin.is_closing():
            logger.debug("send_message ignored: no running process")
            return
        payload = {
            "type": "user",
            "session_id": self._session_id,
            "message": {"role": "user", "content": text},
        }
        proc.stdin.write((json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8"))
        if self._callbacks is not None:
            self._callbacks.on_raw_message(payload)

    def interrupt(self) -> None:
        proc = self._process
        if proc is None or self._aborted:
            return
        self._interrupting = True
        # Windows child processes cannot receive SIGINT; terminating still
        # leaves the session resumable.
        sig = signal.SIGTERM if sys.platform == "win32" else signal.SIGINT
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass

    def abort(self) -> None:
        self._aborted = True
        self._interrupting = False
        self._resume_session_id = None
        proc = self._process
        self._process = None
        if proc is not None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass

    def set_resume_session_id(self, session_id: str | None) -> None:
        self._resume_session_id = session_id or None

    # ── Command construction ──

    def build_allowed_tools(self) -> list[str]:
        perms = self._config.permissions
        tools = list(perms.auto_allow_tools)
        tools.extend(f"{prefix}*" for prefix in perms.allowed_mcp_prefixes)
        if perms.allowed_web_domains:
            tools.extend(f"WebFetch(domain:{d})" for d in perms.allowed_web_domains)
            tools.append("WebSearch")
        return tools

    def _system_prompt(self) -> str:
        parts: list[str] = []
        if self._config.language:
            parts.append(
                "Communicate with the user and write all local records in "
                f"{self._config.language}."
            )
        if self._config.system_prompt_append:
            parts.append(self._config.system_prompt_append.strip())
        # cmd.exe cannot pass newlines inside an argument.
        sep = " " if sys.platform == "win32" else "\n"
        return sep.join(parts)

    def _resume_target(self, resuming: bool) -> str | None:
        return (self._session_id or None) if resuming else self._resume_session_id

    def build_args(self, resuming: bool = False) -> list[str]:
        args = [
            "--print",
            "--output-format", "stream-json",
            "--verbose",
            "--include-partial-messages",
            "--input-format", "stream-json",
            "--permission-mode", "acceptEdits",
        ]

        system_prompt = self._system_prompt()
        if system_prompt:
            args.extend(["--append-system-prompt", system_prompt])

        if self._config.mcp_servers:
            args.extend([
                "--mcp-config",
                json.dumps({"mcpServers": self._config.mcp_servers}),
            ])

        if self._config.model:
            args.extend(["--model", self._config.model])

        if self._bypass_permissions:
            args.append("--dangerously-skip-permissions")
        else:
            allowed = self.build_allowed_tools()
            if allowed:
                args.extend(["--allowedTools", ",".join(allowed)])

        # Nobody is watching to answer interactive questions.
        args.extend(["--disallowedTools", "AskUserQuestion"])

        resume_id = self._resume_target(resuming)
        if resume_id:
            args.extend(["--resume", resume_id])
        return args

    def build_initial_payload(self, resuming: bool = False) -> tuple[dict[str, Any], str, bool]:
        """First stdin message: (payload, text, is_explicit_user_input)."""
        resume_id = self._resume_target(resuming)
        override = self._initial_prompt_override
        text = override or (RESUME_PROMPT if resume_id else self._config.initial_prompt)
        payload: dict[str, Any] = {"type": "user"}
        if resume_id:
            payload["session_id"] = resume_id
        payload["message"] = {"role": "user", "content": text}
        return payload, text, bool(override) or not resume_id

    # ── Process ──

    async def _run_process(self, resuming: bool) -> None:
        command = self.resolve_command(self._command)
        args = self.build_args(resuming)
        logger.debug("Spawning %s with args: %s", command, args)
        logger.debug("CWD: %s", self._workspace_path or os.getcwd())

        try:
            proc = await asyncio.create_subprocess_exec(
                command, *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._workspace_path,
                env=dict(os.environ),
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            logger.debug("Spawn failed: %s", exc)
            raise ProviderStartError(command, str(exc)) from exc

        self._process = proc
        logger.debug("Process spawned, pid=%d", proc.pid)

        # With --input-format stream-json the CLI waits for a stdin message.
        payload, text, explicit = self.build_initial_payload(resuming)
        logger.debug("Sending stdin message: %s", json.dumps(payload)[:200])
        assert proc.stdin is not None
        proc.stdin.write((json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8"))
        try:
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("stdin closed before first message: %s", exc)

        # The CLI does not echo stdin back, so report it here.
        if self._callbacks is not None:
            self._callbacks.on_raw_message(payload)
            if explicit and text and self._callbacks.on_user_input is not None:
                self._callbacks.on_user_input(text)

        await asyncio.gather(
            self._read_stdout(proc),
            self._read_stderr(proc),
        )
        returncode = await proc.wait()
        logger.debug(
            "Process closed with code=%s, aborted=%s, interrupting=%s",
            returncode, self._aborted, self._interrupting,
        )
        if self._process is proc:
            self._process = None

        if self._aborted or self._interrupting:
            return
        # Negative codes mean a signal ended the process.
        if returncode is not None and returncode > 0 and self._callbacks is not None:
            self._callbacks.on_error(ProviderExitError(self._command, returncode))

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            try:
                line = await proc.stdout.readline()
            except ValueError as exc:
                logger.warning("Dropped oversized stdout line: %s", exc)
                continue
            if not line:
                break
            self._handle_line(proc, line.decode("utf-8", errors="replace"))

    def _handle_line(self, proc: asyncio.subprocess.Process, line: str) -> None:
        if not line.strip():
            return
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Failed to parse stdout line: %s", line[:200])
            return
        if not isinstance(raw, dict):
            return

        record_type = raw.get("type")
        if record_type == "system" and raw.get("subtype") == "init" and raw.get("session_id"):
            self._session_id = str(raw["session_id"])
            logger.debug("Session ID: %s", self._session_id)

        callbacks = self._callbacks
        if callbacks is not None:
            if record_type != "stream_event":
                callbacks.on_raw_message(raw)
            for entry in parse_message(raw):
                callbacks.on_message(entry)

        if record_type == "result" and proc.stdin is not None and not proc.stdin.is_closing():
            logger.debug("Result received, closing stdin")
            proc.stdin.close()

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            try:
                line = await proc.stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip("\n")
            logger.debug("stderr: %s", text)
            if self._callbacks is not None and self._callbacks.on_stderr is not None:
                self._callbacks.on_stderr(text)
