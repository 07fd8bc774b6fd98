"""Async event bus bridging session manager callbacks to consumers.

The session manager fires synchronous observer callbacks on the event
loop. The EventBus turns them into typed events on a queue that a
consumer (the CLI renderer) drains at its own pace.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from overseer.adapters.events import (
    EntryAdded,
    MetaUpdated,
    SessionErrorEvent,
    SessionEvent,
    SessionStarted,
    SettingsChanged,
    StatusChanged,
    StreamingCleared,
)
from overseer.engine.models import AgentStatus, Entry, RuntimeSettings, SessionMeta
from overseer.engine.session_manager import SessionManagerCallbacks

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging session callbacks to event consumers."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def emit(self, event: SessionEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "EventBus queue full, dropping: %s (queue size: %d)",
                event.event_type, self._queue.qsize(),
            )

    def make_callbacks(self) -> SessionManagerCallbacks:
        """Return SessionManagerCallbacks that publish onto this bus."""
        return SessionManagerCallbacks(
            on_entry=self._on_entry,
            on_meta=self._on_meta,
            on_status=self._on_status,
            on_clear_streaming=lambda: self.emit(StreamingCleared()),
            on_error=lambda message: self.emit(SessionErrorEvent(message=message)),
            on_session_started=lambda sid: self.emit(SessionStarted(session_id=sid)),
            on_settings_change=self._on_settings,
        )

    def _on_entry(self, entry: Entry) -> None:
        self.emit(EntryAdded(entry=entry))

    def _on_meta(self, meta: SessionMeta) -> None:
        self.emit(MetaUpdated(
            session_id=meta.session_id,
            model=meta.model,
            total_cost_usd=meta.total_cost_usd,
            num_turns=meta.num_turns,
            input_tokens=meta.input_tokens,
            output_tokens=meta.output_tokens,
            is_compacting=meta.is_compacting,
            context_window=meta.context_window,
        ))

    def _on_status(self, status: AgentStatus) -> None:
        self.emit(StatusChanged(status=status.value))

    def _on_settings(self, settings: RuntimeSettings) -> None:
        self.emit(SettingsChanged(settings=settings.to_dict()))

    async def consume(self) -> AsyncIterator[SessionEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
                yield event
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    def drain(self) -> list[SessionEvent]:
        """Return and remove every queued event without waiting."""
        events: list[SessionEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover events and re-open the bus."""
        self.drain()
        self._closed = False
