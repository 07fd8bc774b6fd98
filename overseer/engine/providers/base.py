"""Abstract base for agent process providers.

A provider owns one agent process at a time. The session manager
calls start() for every run (first start and each resume) and reacts
to the callbacks the provider fires while the process runs. start()
returns when the process has finished.
"""
from __future__ import annotations

import abc
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..models import Entry

logger = logging.getLogger(__name__)


@dataclass
class ProviderCallbacks:
    """Callbacks a provider fires while its process runs.

    For a complete assistant record the provider calls on_raw_message
    before on_message for the entries normalized from it.
    """
    on_message: Callable[[Entry], None]
    on_raw_message: Callable[[dict[str, Any]], None]
    on_error: Callable[[Exception], None]
    on_stderr: Callable[[str], None] | None = None
    # Prompt text the provider wrote to the agent's stdin.
    on_user_input: Callable[[str], None] | None = None


class AgentProvider(abc.ABC):
    """Abstract provider interface."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'claude-cli')."""

    @property
    def supports_input(self) -> bool:
        """Whether send_message() can reach a running agent."""
        return True

    @property
    def session_id(self) -> str | None:
        """Session id reported by the most recent run, if any."""
        return None

    @abc.abstractmethod
    async def start(
        self,
        callbacks: ProviderCallbacks,
        initial_prompt: str | None = None,
    ) -> None:
        """Run the agent until its process exits."""

    @abc.abstractmethod
    def send_message(self, text: str) -> None:
        """Deliver *text* to the running agent."""

    @abc.abstractmethod
    def interrupt(self) -> None:
        """Ask the running agent to stop its current turn."""

    @abc.abstractmethod
    def abort(self) -> None:
        """Stop the agent and forget any resume target."""

    def set_resume_session_id(self, session_id: str | None) -> None:
        """Resume *session_id* on the next start(). Default no-op."""
        return None

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve the agent binary, preferring *command* over *fallback*.

        A command missing from PATH is kept as-is so the spawn error
        names what was configured.
        """
        if command and shutil.which(command):
            return command
        if fallback and shutil.which(fallback):
            logger.debug(
                "Command %s not found; falling back to %s for provider %s",
                command, fallback, self.name,
            )
            return fallback
        return command or fallback or ""
