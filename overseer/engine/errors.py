"""Exception hierarchy for the session engine.

Specific exceptions for each failure mode. Malformed stream input
never raises; these cover caller mistakes and provider failures.
"""
from __future__ import annotations


class OverseerError(Exception):
    """Base exception for all session engine errors."""


class SessionActiveError(OverseerError):
    """A session cannot be loaded while the agent is starting or running."""
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Cannot load session while active (status: {status})")


class InvalidSessionIdError(OverseerError, ValueError):
    """Session id is not a UUID."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Invalid session ID: {session_id!r}")


class SessionNotFoundError(OverseerError):
    """No raw log exists for the requested session."""
    def __init__(self, session_id: str, path: str = ""):
        self.session_id = session_id
        self.path = path
        super().__init__(f"Session log not found: {session_id}")


class ProviderStartError(OverseerError):
    """The agent process could not be spawned."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {command}: {reason}")


class ProviderExitError(OverseerError):
    """The agent process exited with a non-zero code."""
    def __init__(self, command: str, returncode: int | None):
        self.command = command
        self.returncode = returncode
        super().__init__(f"{command} process exited with code {returncode}")


class ConfigError(OverseerError):
    """Config file could not be read or parsed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
