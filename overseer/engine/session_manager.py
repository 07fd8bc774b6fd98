"""Session lifecycle controller.

Owns the agent status, the in-memory entry ring, session metadata and
the auto-resume control loop. Everything runs on one asyncio event
loop and reacts to callbacks from a single provider.

Auto-resume:
    completion ──(resume delay)──> resume(message)
        unless: too many consecutive failed starts   -> disable
                timeout already exceeded             -> disable
                stopping after the timeout message   -> disable

    timeout timer while running ──> send timeout message, stopping=True,
                                    arm force-stop
    force-stop timer ──> interrupt, disable

Timers are cancellable handles owned by the manager. Manual actions
(interrupt, abort, reset, resume) cancel every pending timer first.
Each auto-resume transition broadcasts the settings snapshot once.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .config import AutoResumeConfig, fire_event
from .context_window import get_context_window
from .errors import SessionActiveError
from .lifecycle import check_transition
from .models import (
    AgentStatus,
    AutoResumeState,
    Entry,
    NotificationEntry,
    ResultEntry,
    RuntimeSettings,
    SessionMeta,
    SystemEntry,
    TextEntry,
    ThinkingEntry,
    ToolCallEntry,
    UserMessageEntry,
    is_streaming_entry,
)
from .providers.base import AgentProvider, ProviderCallbacks
from overseer.shared.services.entry_log import EntryLog
from overseer.shared.services.session_history import replay_session

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


@dataclass
class SessionManagerCallbacks:
    """Observer hooks. All optional; exceptions are logged and swallowed."""
    on_entry: Callable[[Entry], None] | None = None
    on_meta: Callable[[SessionMeta], None] | None = None
    on_status: Callable[[AgentStatus], None] | None = None
    on_clear_streaming: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None
    on_session_started: Callable[[str], None] | None = None
    on_settings_change: Callable[[RuntimeSettings], None] | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class SessionManager:
    """Drives one provider and keeps the live view of its session."""

    def __init__(
        self,
        provider: AgentProvider,
        *,
        log_dir: str,
        max_log_entries: int = 5000,
        auto_resume_config: AutoResumeConfig | None = None,
        entry_log: EntryLog | None = None,
        clock: Callable[[], datetime] | None = None,
        call_later: CallLater | None = None,
    ) -> None:
        self._provider = provider
        self._log_dir = str(log_dir)
        self._max_log_entries = max_log_entries
        self._log = entry_log or EntryLog()
        self._now = clock or _utcnow
        self._call_later = call_later or _loop_call_later

        self._entries: deque[Entry] = deque(maxlen=max_log_entries)
        self._meta: SessionMeta | None = None
        self._status = AgentStatus.IDLE
        self._callbacks = SessionManagerCallbacks()
        # Set by interrupt(); the next completion lands in INTERRUPTED
        # and no auto-resume is scheduled.
        self._interrupt_requested = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self._ar_config = auto_resume_config or AutoResumeConfig()
        self._ar_enabled = self._ar_config.enabled
        self._ar_timeout_minutes = self._ar_config.timeout_minutes
        self._ar_started_at: datetime | None = None
        self._ar_stopping = False
        self._resume_timer: TimerHandle | None = None
        # Resume task spawned by the resume timer but not yet running.
        self._pending_resume: asyncio.Task[Any] | None = None
        self._timeout_timer: TimerHandle | None = None
        self._force_stop_timer: TimerHandle | None = None
        self._consecutive_errors = 0

    def set_callbacks(self, callbacks: SessionManagerCallbacks) -> None:
        self._callbacks = callbacks

    # ── State getters ──

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def current_meta(self) -> SessionMeta | None:
        return self._meta

    @property
    def current_entries(self) -> list[Entry]:
        return list(self._entries)

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def get_auto_resume_state(self) -> AutoResumeState:
        return AutoResumeState(
            enabled=self._ar_enabled,
            timeout_minutes=self._ar_timeout_minutes,
            started_at=self._ar_started_at,
            stopping=self._ar_stopping,
        )

    def get_runtime_settings(self) -> RuntimeSettings:
        return RuntimeSettings(auto_resume=self.get_auto_resume_state())

    # ── Auto-resume API ──

    def set_auto_resume(self, enabled: bool, timeout_minutes: float | None = None) -> None:
        """Turn auto-resume on or off.

        Re-enabling keeps the original start time, so changing the
        timeout never restarts the clock. Enabling while the agent is
        idle or done kicks off a resume after the usual delay.
        """
        self._ar_enabled = enabled
        if timeout_minutes is not None:
            self._ar_timeout_minutes = timeout_minutes

        if enabled:
            if self._ar_started_at is None:
                self._ar_started_at = self._now()
            self._start_timeout_timer()
            self._broadcast_settings()
            if self._status in (AgentStatus.IDLE, AgentStatus.DONE):
                self._schedule_auto_resume()
        else:
            self._cancel_all_timers()
            self._ar_started_at = None
            self._ar_stopping = False
            self._broadcast_settings()

    # ── Session lifecycle ──

    async def start(self, initial_prompt: str | None = None) -> None:
        # A manual start replaces the resume kicked off by set_auto_resume().
        self._cancel(self._resume_timer)
        self._resume_timer = None
        self._cancel_pending_resume()
        self._set_status(AgentStatus.STARTING)
        logger.debug("Starting provider %s", self._provider.name)
        await self._run_provider(initial_prompt)

    def send_message(self, text: str) -> None:
        self._provider.send_message(text)
        self._record(UserMessageEntry(timestamp=self._now(), text=text))

    def interrupt(self) -> None:
        self._interrupt_requested = True
        self._cancel_all_timers()
        self._provider.interrupt()

    async def resume(self, message: str | None = None) -> None:
        """Start the agent again on the current session.

        *message* becomes the first prompt of the new run. A pending
        auto-resume is cancelled, so a manual resume always wins.
        """
        self._interrupt_requested = False
        self._cancel_all_timers()
        if self._ar_enabled:
            self._start_timeout_timer()

        resume_id = (self._meta.session_id if self._meta else "") or self._provider.session_id
        if resume_id:
            self._provider.set_resume_session_id(resume_id)

        self._set_status(AgentStatus.STARTING)
        logger.debug(
            "Resuming session %s%s",
            resume_id or "(no id)", " with message" if message else "",
        )
        await self._run_provider(message)

    def abort(self) -> None:
        self._provider.abort()
        self._log.close()
        self._disable_auto_resume()

    def reset(self) -> None:
        # Always abort so the provider drops its resume target.
        self._provider.abort()
        self._log.close()
        self._entries.clear()
        self._meta = None
        self._interrupt_requested = False
        self._disable_auto_resume()
        self._set_status(AgentStatus.IDLE)

    async def load_from_history(self, session_id: str) -> None:
        """Replace the live view with a logged session, ready to resume.

        Raises SessionActiveError while the agent is starting or
        running, and the replay errors for a bad or missing session.
        """
        if self._status in (AgentStatus.RUNNING, AgentStatus.STARTING):
            raise SessionActiveError(self._status.value)

        entries, meta = await asyncio.to_thread(replay_session, self._log_dir, session_id)
        # A run may have started while the replay was reading.
        if self._status in (AgentStatus.RUNNING, AgentStatus.STARTING):
            raise SessionActiveError(self._status.value)

        self.reset()
        if meta is not None:
            self._meta = replace(
                meta,
                context_window=get_context_window(meta.model),
                supports_input=self._provider.supports_input,
            )
            self._log.initialize(session_id, self._log_dir)
            fire_event(self._callbacks.on_meta, self._meta)

        self._entries.extend(entries)
        for entry in self._entries:
            fire_event(self._callbacks.on_entry, entry)

        self._provider.set_resume_session_id(session_id)
        logger.info("Loaded session %s (%d entries)", session_id, len(entries))
        self._set_status(AgentStatus.DONE)

    # ── Provider run ──

    async def _run_provider(self, initial_prompt: str | None) -> None:
        callbacks = ProviderCallbacks(
            on_message=self._handle_entry,
            on_raw_message=self._handle_raw_message,
            on_error=self._handle_error,
            on_stderr=self._handle_stderr,
            on_user_input=self._add_user_message,
        )
        failed = False
        try:
            await self._provider.start(callbacks, initial_prompt)
        except Exception as exc:
            # A failed start settles like a completed run.
            failed = True
            logger.error("Session error: %s", exc, exc_info=True)

        if self._interrupt_requested:
            self._finalize_interrupted()
            self._set_status(AgentStatus.INTERRUPTED)
            return

        if failed:
            self._consecutive_errors += 1
        self._set_status(AgentStatus.DONE)
        self._schedule_auto_resume()

    # ── Provider callbacks ──

    def _handle_entry(self, entry: Entry) -> None:
        if isinstance(entry, (TextEntry, ThinkingEntry)) and entry.is_streaming:
            index = self._find_entry(entry.id)
            if index >= 0:
                existing = self._entries[index]
                if isinstance(existing, (TextEntry, ThinkingEntry)):
                    updated = replace(existing, text=existing.text + entry.text)
                    self._entries[index] = updated
                    fire_event(self._callbacks.on_entry, updated)
                    return
            self._entries.append(entry)
            fire_event(self._callbacks.on_entry, entry)
            return

        if isinstance(entry, ToolCallEntry) and entry.is_streaming:
            self._entries.append(entry)
            fire_event(self._callbacks.on_entry, entry)
            return

        if isinstance(entry, SystemEntry):
            self._on_system_entry(entry)
        elif isinstance(entry, ResultEntry):
            if self._meta is not None:
                self._meta = replace(
                    self._meta,
                    total_cost_usd=entry.total_cost_usd,
                    num_turns=entry.num_turns,
                )
                fire_event(self._callbacks.on_meta, self._meta)
            if not self._interrupt_requested:
                self._set_status(AgentStatus.DONE)

        self._record(entry)

    def _on_system_entry(self, entry: SystemEntry) -> None:
        logger.debug("System entry received, session_id=%s", entry.session_id)
        self._consecutive_errors = 0
        prev = self._meta
        # Token and cost totals carry over a resume so the context gauge
        # does not drop to zero before the first assistant message.
        self._meta = SessionMeta(
            session_id=entry.session_id,
            model=entry.model,
            tools=list(entry.tools),
            mcp_servers=list(entry.mcp_servers),
            total_cost_usd=prev.total_cost_usd if prev else 0.0,
            num_turns=prev.num_turns if prev else 0,
            input_tokens=prev.input_tokens if prev else 0,
            output_tokens=prev.output_tokens if prev else 0,
            is_compacting=False,
            context_window=get_context_window(entry.model, entry.betas),
            supports_input=self._provider.supports_input,
        )
        self._log.initialize(entry.session_id, self._log_dir)
        fire_event(self._callbacks.on_session_started, entry.session_id)
        self._set_status(AgentStatus.RUNNING)
        fire_event(self._callbacks.on_meta, self._meta)

    def _handle_raw_message(self, raw: dict[str, Any]) -> None:
        self._log.log_raw(raw)
        if not isinstance(raw, dict):
            return

        record_type = raw.get("type")
        if record_type == "assistant":
            # Runs before the provider hands over the entries normalized
            # from this record.
            self._clear_streaming_entries()
            message = raw.get("message")
            usage = message.get("usage") if isinstance(message, dict) else None
            if isinstance(usage, dict) and self._meta is not None:
                total_input = sum(
                    int(usage.get(key) or 0)
                    for key in (
                        "input_tokens",
                        "cache_creation_input_tokens",
                        "cache_read_input_tokens",
                    )
                )
                output = usage.get("output_tokens")
                self._meta = replace(
                    self._meta,
                    input_tokens=total_input,
                    output_tokens=int(output) if output is not None else self._meta.output_tokens,
                )
                fire_event(self._callbacks.on_meta, self._meta)

        elif record_type == "system" and self._meta is not None:
            subtype = raw.get("subtype")
            if subtype == "status":
                self._meta = replace(self._meta, is_compacting=raw.get("status") == "compacting")
                fire_event(self._callbacks.on_meta, self._meta)
            elif subtype == "compact_boundary":
                self._meta = replace(self._meta, is_compacting=False)
                fire_event(self._callbacks.on_meta, self._meta)

    def _handle_error(self, error: Exception) -> None:
        self._set_status(AgentStatus.ERROR)
        self._record(TextEntry(timestamp=self._now(), text=f"Error: {error}"))
        fire_event(self._callbacks.on_error, str(error))

    def _handle_stderr(self, data: str) -> None:
        trimmed = data.strip()
        if not trimmed:
            return
        self._record(TextEntry(timestamp=self._now(), text=f"[stderr] {trimmed}"))

    def _add_user_message(self, text: str) -> None:
        self._record(UserMessageEntry(timestamp=self._now(), text=text))

    # ── Entry helpers ──

    def _record(self, entry: Entry) -> None:
        """Persist, keep, and broadcast a finished entry."""
        self._log.log_entry(entry)
        self._entries.append(entry)
        fire_event(self._callbacks.on_entry, entry)

    def _find_entry(self, entry_id: str) -> int:
        for index in range(len(self._entries) - 1, -1, -1):
            if self._entries[index].id == entry_id:
                return index
        return -1

    def _clear_streaming_entries(self) -> None:
        if not any(is_streaming_entry(e) for e in self._entries):
            return
        kept = [e for e in self._entries if not is_streaming_entry(e)]
        self._entries.clear()
        self._entries.extend(kept)
        fire_event(self._callbacks.on_clear_streaming)

    def _finalize_interrupted(self) -> None:
        for index, entry in enumerate(self._entries):
            if is_streaming_entry(entry):
                final = replace(entry, is_streaming=False)
                self._entries[index] = final
                self._log.log_entry(final)
                fire_event(self._callbacks.on_entry, final)
        self._record(NotificationEntry(timestamp=self._now(), text="Interrupted"))

    def _set_status(self, status: AgentStatus) -> None:
        check_transition(self._status, status)
        if status != self._status:
            logger.debug("Status %s -> %s", self._status.value, status.value)
        self._status = status
        fire_event(self._callbacks.on_status, status)

    # ── Auto-resume internals ──

    def _schedule_auto_resume(self) -> None:
        if not self._ar_enabled:
            return

        if self._ar_stopping:
            # Agent wrapped up after the timeout message.
            self._ar_stopping = False
            self._ar_enabled = False
            self._ar_started_at = None
            self._cancel_all_timers()
            self._broadcast_settings()
            logger.info("Agent completed after timeout message, auto-resume disabled")
            return

        if self._consecutive_errors >= self._ar_config.max_consecutive_errors:
            self._ar_enabled = False
            self._ar_started_at = None
            self._cancel_all_timers()
            self._broadcast_settings()
            logger.warning(
                "Auto-resume disabled after %d consecutive failed starts",
                self._consecutive_errors,
            )
            return

        if self._timeout_exceeded():
            self._ar_enabled = False
            self._ar_started_at = None
            self._cancel_all_timers()
            self._broadcast_settings()
            logger.info("Timeout exceeded at completion, auto-resume disabled")
            return

        if self._ar_started_at is None:
            self._ar_started_at = self._now()
            self._start_timeout_timer()
            self._broadcast_settings()

        self._cancel(self._resume_timer)
        delay = self._ar_config.resume_delay_seconds
        logger.debug("Scheduling auto-resume in %.1fs", delay)
        self._resume_timer = self._call_later(delay, self._fire_auto_resume)

    def _timeout_exceeded(self) -> bool:
        if self._ar_timeout_minutes <= 0 or self._ar_started_at is None:
            return False
        elapsed = self._now() - self._ar_started_at
        return elapsed >= timedelta(minutes=self._ar_timeout_minutes)

    def _fire_auto_resume(self) -> None:
        self._resume_timer = None
        if self._status in (AgentStatus.RUNNING, AgentStatus.STARTING):
            logger.debug("Auto-resume skipped: agent is %s", self._status.value)
            return
        message = self._ar_config.message
        logger.info("Auto-resuming with: %r", message)
        self._pending_resume = self._spawn(self._auto_resume(message))

    async def _auto_resume(self, message: str) -> None:
        self._pending_resume = None
        await self.resume(message)

    def _start_timeout_timer(self) -> None:
        self._cancel(self._timeout_timer)
        self._timeout_timer = None
        if self._ar_timeout_minutes <= 0 or self._ar_started_at is None:
            return

        deadline = self._ar_started_at + timedelta(minutes=self._ar_timeout_minutes)
        remaining = (deadline - self._now()).total_seconds()
        if remaining <= 0:
            self._handle_timeout()
            return
        logger.debug("Timeout timer set for %ds", round(remaining))
        self._timeout_timer = self._call_later(remaining, self._handle_timeout)

    def _handle_timeout(self) -> None:
        self._timeout_timer = None
        self._cancel(self._resume_timer)
        self._resume_timer = None
        self._cancel_pending_resume()

        if self._status in (AgentStatus.RUNNING, AgentStatus.STARTING):
            self._ar_stopping = True
            self._broadcast_settings()
            logger.info("Timeout reached, asking the running agent to wrap up")
            self.send_message(self._ar_config.timeout_message)
            self._cancel(self._force_stop_timer)
            self._force_stop_timer = self._call_later(
                self._ar_config.force_stop_delay_seconds, self._handle_force_stop,
            )
        else:
            self._ar_enabled = False
            self._ar_started_at = None
            self._broadcast_settings()
            logger.info("Timeout reached while agent idle, auto-resume disabled")

    def _handle_force_stop(self) -> None:
        self._force_stop_timer = None
        if not self._ar_stopping:
            return
        logger.warning("Force-stopping agent after timeout grace period")
        self._ar_enabled = False
        self._ar_stopping = False
        self._ar_started_at = None
        self._cancel_all_timers()
        self._broadcast_settings()
        self.interrupt()

    def _disable_auto_resume(self) -> None:
        self._cancel_all_timers()
        self._ar_enabled = False
        self._ar_stopping = False
        self._ar_started_at = None
        self._broadcast_settings()

    @staticmethod
    def _cancel(timer: TimerHandle | None) -> None:
        if timer is not None:
            timer.cancel()

    def _cancel_all_timers(self) -> None:
        for timer in (self._resume_timer, self._timeout_timer, self._force_stop_timer):
            self._cancel(timer)
        self._resume_timer = None
        self._timeout_timer = None
        self._force_stop_timer = None
        self._cancel_pending_resume()

    def _cancel_pending_resume(self) -> None:
        if self._pending_resume is not None:
            logger.debug("Dropping queued auto-resume")
            self._pending_resume.cancel()
            self._pending_resume = None

    def _broadcast_settings(self) -> None:
        fire_event(self._callbacks.on_settings_change, self.get_runtime_settings())

    def _spawn(self, coro) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Auto-resume failed: %s", exc, exc_info=exc)
