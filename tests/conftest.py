"""Shared fakes: a manual scheduler and a scripted provider."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from overseer.engine.models import SystemEntry
from overseer.engine.providers.base import AgentProvider, ProviderCallbacks

SESSION_ID = "3f2c1a9e-8b7d-4c6e-9f01-23456789abcd"


async def settle(rounds: int = 20) -> None:
    """Let spawned tasks and chained callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class _Timer:
    def __init__(self, when: datetime, seq: int, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later plus a wall clock.

    advance() moves time forward and fires due timers in order;
    jump() moves only the clock.
    """

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.timers: list[_Timer] = []
        self._seq = 0

    def clock(self) -> datetime:
        return self.now

    def call_later(self, delay: float, callback) -> _Timer:
        self._seq += 1
        timer = _Timer(self.now + timedelta(seconds=delay), self._seq, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[_Timer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> None:
        """Fire the earliest pending timer without letting tasks run."""
        timer = min(self.pending(), key=lambda t: (t.when, t.seq))
        self.now = max(self.now, timer.when)
        timer.fired = True
        timer.callback()

    def jump(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def advance(self, seconds: float) -> None:
        target = self.now + timedelta(seconds=seconds)
        while True:
            due = sorted(
                (t for t in self.pending() if t.when <= target),
                key=lambda t: (t.when, t.seq),
            )
            if not due:
                break
            timer = due[0]
            self.now = max(self.now, timer.when)
            timer.fired = True
            timer.callback()
            await settle()
        self.now = target
        await settle()


class FakeProvider(AgentProvider):
    """Provider whose runs stay open until the test completes them."""

    def __init__(self, session_id: str = SESSION_ID) -> None:
        self.calls = MagicMock()
        self.callbacks: ProviderCallbacks | None = None
        self.prompts: list[str | None] = []
        self.resume_ids: list[str | None] = []
        self.fail_next = 0
        self.emit_init = True
        self.model = "claude-sonnet"
        self._session_id = session_id
        self._runs: list[asyncio.Future] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def session_id(self) -> str | None:
        return self._session_id or None

    @property
    def start_count(self) -> int:
        return len(self.prompts)

    async def start(self, callbacks, initial_prompt=None) -> None:
        self.callbacks = callbacks
        self.prompts.append(initial_prompt)
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("spawn failed")
        if self.emit_init:
            callbacks.on_message(SystemEntry(session_id=self._session_id, model=self.model))
        run = asyncio.get_running_loop().create_future()
        self._runs.append(run)
        await run

    def complete(self) -> None:
        """Finish the oldest open run, as if the process exited."""
        for run in self._runs:
            if not run.done():
                run.set_result(None)
                return

    def complete_all(self) -> None:
        for run in self._runs:
            if not run.done():
                run.set_result(None)

    def send_message(self, text: str) -> None:
        self.calls.send_message(text)

    def interrupt(self) -> None:
        self.calls.interrupt()

    def abort(self) -> None:
        self.calls.abort()
        self.complete_all()

    def set_resume_session_id(self, session_id: str | None) -> None:
        self.resume_ids.append(session_id)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def provider():
    return FakeProvider()
