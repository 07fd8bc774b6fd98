"""CLI entry point for the session supervisor.

Usage:
    overseer --prompt "Work through TODO.md"
    overseer --config ~/.overseer/config.yaml --auto-resume --timeout-minutes 120
    overseer --resume 3f2c...  --prompt "Also update the changelog"
    overseer --list-sessions
    overseer --replay 3f2c...

Ctrl-C once interrupts the agent; a second Ctrl-C aborts it.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from overseer.adapters.event_bus import EventBus
from overseer.adapters.events import (
    EntryAdded,
    MetaUpdated,
    SessionErrorEvent,
    SessionEvent,
    SettingsChanged,
    StatusChanged,
)
from overseer.shared.formatters.entry_text import (
    format_cost,
    format_duration,
    format_entry_parts,
    format_timestamp,
)
from overseer.shared.services.session_history import list_sessions, replay_session

from .config import SessionConfig
from .errors import OverseerError
from .models import AgentStatus, Entry, is_streaming_entry
from .providers.claude_cli import ClaudeCliProvider
from .session_manager import SessionManager
from .yaml_config import load_config

logger = logging.getLogger(__name__)

_KIND_STYLES = {
    "system": "bold cyan",
    "thinking": "dim italic",
    "text": "",
    "tool_call": "yellow",
    "tool_result": "green",
    "user_message": "bold magenta",
    "result": "bold blue",
    "notification": "bold red",
}


def render_entry(entry: Entry) -> Text:
    """Rich rendering of a finished entry."""
    header, body = format_entry_parts(entry)
    style = _KIND_STYLES.get(entry.kind, "")
    if entry.kind == "tool_result" and getattr(entry, "is_error", False):
        style = "red"
    text = Text(f"{format_timestamp(entry.timestamp)} ", style="dim")
    text.append(header, style=style or None)
    if body:
        text.append("\n" + body)
    return text


class ConsoleRenderer:
    """Prints session events as they arrive on the bus."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._last_status: str | None = None

    def handle(self, event: SessionEvent) -> None:
        if isinstance(event, EntryAdded) and event.entry is not None:
            # Deltas are shown once the complete message arrives.
            if not is_streaming_entry(event.entry):
                self._console.print(render_entry(event.entry))
        elif isinstance(event, StatusChanged):
            if event.status != self._last_status:
                self._last_status = event.status
                self._console.print(Text(f"status: {event.status}", style="dim"))
        elif isinstance(event, SettingsChanged):
            ar = event.settings.get("auto_resume", {})
            state = "on" if ar.get("enabled") else "off"
            if ar.get("stopping"):
                state = "stopping"
            self._console.print(Text(
                f"auto-resume: {state} (timeout {ar.get('timeout_minutes', 0)} min)",
                style="dim cyan",
            ))
        elif isinstance(event, MetaUpdated) and event.is_compacting:
            self._console.print(Text("compacting context...", style="dim"))
        elif isinstance(event, SessionErrorEvent):
            self._console.print(Text(f"error: {event.message}", style="bold red"))

    async def run(self, bus: EventBus) -> None:
        async for event in bus.consume():
            self.handle(event)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="overseer",
        description="Supervise a Claude CLI agent with logging and auto-resume",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (created with defaults if missing)",
    )
    parser.add_argument(
        "--prompt", "-p",
        default=None,
        help="Initial prompt (default: initial_prompt from config)",
    )
    parser.add_argument("--model", default=None, help="Claude model alias or id")
    parser.add_argument(
        "--workspace",
        default=None,
        help="Working directory for the agent (default: current dir)",
    )
    parser.add_argument("--log-dir", default=None, help="Session log root")
    parser.add_argument(
        "--auto-resume",
        action="store_true",
        help="Restart the agent whenever it stops",
    )
    parser.add_argument(
        "--timeout-minutes",
        type=float,
        default=None,
        help="Stop auto-resuming after this many minutes (0 = no limit)",
    )
    parser.add_argument(
        "--skip-permissions",
        action="store_true",
        help="Pass --dangerously-skip-permissions to the agent",
    )
    parser.add_argument(
        "--resume",
        metavar="SESSION_ID",
        default=None,
        help="Load a logged session and continue it",
    )
    parser.add_argument(
        "--list-sessions",
        action="store_true",
        help="List logged sessions and exit",
    )
    parser.add_argument(
        "--replay",
        metavar="SESSION_ID",
        default=None,
        help="Print a logged session and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-log",
        default=None,
        help="Also write debug logs to this file (rotated)",
    )
    return parser


def _configure_logging(verbose: bool, debug_log: str | None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    if debug_log:
        Path(debug_log).expanduser().parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            Path(debug_log).expanduser(),
            maxBytes=2_000_000, backupCount=5, encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
        ))
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        for handler in root.handlers:
            handler.setLevel(level)
        root.addHandler(file_handler)


def build_config(args: argparse.Namespace) -> SessionConfig:
    config = load_config(args.config) if args.config else SessionConfig()
    config = SessionConfig.from_env(config)
    if args.model is not None:
        config.model = args.model
    if args.workspace is not None:
        config.workspace_path = args.workspace
    if args.log_dir is not None:
        config.log_dir = str(Path(args.log_dir).expanduser())
    if args.skip_permissions:
        config.dangerously_skip_permissions = True
    if args.auto_resume:
        config.auto_resume.enabled = True
    if args.timeout_minutes is not None:
        config.auto_resume.timeout_minutes = args.timeout_minutes
    return config


def print_sessions(console: Console, log_dir: str) -> None:
    sessions = list_sessions(log_dir)
    if not sessions:
        console.print(f"No sessions in {log_dir}")
        return
    table = Table(title=f"Sessions in {log_dir}")
    table.add_column("Session")
    table.add_column("Model")
    table.add_column("Modified")
    table.add_column("Cost", justify="right")
    table.add_column("Turns", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Last message")
    for s in sessions:
        table.add_row(
            s.session_id,
            s.model,
            s.last_modified.astimezone().strftime("%Y-%m-%d %H:%M") if s.last_modified else "",
            format_cost(s.total_cost_usd),
            str(s.num_turns),
            format_duration(s.duration_ms),
            s.last_message or "",
        )
    console.print(table)


def print_replay(console: Console, log_dir: str, session_id: str) -> None:
    entries, meta = replay_session(log_dir, session_id)
    for entry in entries:
        console.print(render_entry(entry))
    if meta is not None:
        console.print(Text(
            f"{meta.model} | cost {format_cost(meta.total_cost_usd)} | "
            f"turns {meta.num_turns} | tokens in {meta.input_tokens} "
            f"out {meta.output_tokens}",
            style="dim",
        ))


async def resume_from_history(
    manager: SessionManager, config: SessionConfig, session_id: str, prompt: str | None,
) -> None:
    """Load a logged session and continue it under the configured auto-resume."""
    await manager.load_from_history(session_id)
    # Loading resets the manager, which turns auto-resume off.
    if config.auto_resume.enabled:
        manager.set_auto_resume(True, config.auto_resume.timeout_minutes)
    await manager.resume(prompt)


def _is_finished(manager: SessionManager) -> bool:
    status = manager.status
    if status in (AgentStatus.STARTING, AgentStatus.RUNNING):
        return False
    # A resume is pending while auto-resume is on and the run completed.
    if status == AgentStatus.DONE and manager.get_auto_resume_state().enabled:
        return False
    return True


async def run_session(
    config: SessionConfig,
    prompt: str | None,
    resume_id: str | None,
    console: Console,
) -> AgentStatus:
    provider = ClaudeCliProvider(config)
    manager = SessionManager(
        provider,
        log_dir=config.log_dir,
        max_log_entries=config.max_log_entries,
        auto_resume_config=config.auto_resume,
    )
    bus = EventBus()
    manager.set_callbacks(bus.make_callbacks())
    renderer = ConsoleRenderer(console)
    consumer = asyncio.create_task(renderer.run(bus))

    interrupts = 0

    def _on_sigint() -> None:
        nonlocal interrupts
        interrupts += 1
        if interrupts == 1:
            console.print(Text("Interrupting... (Ctrl-C again to abort)", style="yellow"))
            manager.interrupt()
        else:
            console.print(Text("Aborting", style="bold red"))
            manager.abort()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _on_sigint)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C raises KeyboardInterrupt")

    try:
        if resume_id:
            await resume_from_history(manager, config, resume_id, prompt)
        else:
            await manager.start(prompt or config.initial_prompt or None)
        while not _is_finished(manager):
            await asyncio.sleep(0.5)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        manager.abort()
        # Let the renderer print what is already queued.
        for event in bus.drain():
            renderer.handle(event)
        bus.close()
        consumer.cancel()

    return manager.status


def main() -> None:
    args = _build_parser().parse_args()
    _configure_logging(args.verbose, args.debug_log)
    console = Console()

    try:
        config = build_config(args)
    except OverseerError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    if args.list_sessions:
        print_sessions(console, config.log_dir)
        return

    try:
        if args.replay:
            print_replay(console, config.log_dir, args.replay)
            return
        status = asyncio.run(run_session(config, args.prompt, args.resume, console))
    except OverseerError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(130)

    if status == AgentStatus.ERROR:
        sys.exit(1)


if __name__ == "__main__":
    main()
