"""Overseer: supervise a Claude CLI agent, log its stream, keep it running."""
from .models import (
    AgentStatus,
    AutoResumeState,
    Entry,
    EntryKind,
    NotificationEntry,
    ResultEntry,
    RuntimeSettings,
    SessionMeta,
    SessionSummary,
    SystemEntry,
    TextEntry,
    ThinkingEntry,
    ToolCallEntry,
    ToolResultEntry,
    UserMessageEntry,
)
from .config import AutoResumeConfig, PermissionsConfig, SessionConfig
from .errors import (
    ConfigError,
    InvalidSessionIdError,
    OverseerError,
    ProviderExitError,
    ProviderStartError,
    SessionActiveError,
    SessionNotFoundError,
)

__all__ = [
    # Session manager (lazy import to avoid circular deps)
    "SessionManager",
    "SessionManagerCallbacks",
    # Normalizer (lazy import)
    "StreamNormalizer",
    "create_replay_normalizer",
    # Models
    "AgentStatus",
    "AutoResumeState",
    "Entry",
    "EntryKind",
    "NotificationEntry",
    "ResultEntry",
    "RuntimeSettings",
    "SessionMeta",
    "SessionSummary",
    "SystemEntry",
    "TextEntry",
    "ThinkingEntry",
    "ToolCallEntry",
    "ToolResultEntry",
    "UserMessageEntry",
    # Config
    "AutoResumeConfig",
    "PermissionsConfig",
    "SessionConfig",
    "load_config",
    # Providers (lazy import)
    "AgentProvider",
    "ClaudeCliProvider",
    # Errors
    "ConfigError",
    "InvalidSessionIdError",
    "OverseerError",
    "ProviderExitError",
    "ProviderStartError",
    "SessionActiveError",
    "SessionNotFoundError",
]


def __getattr__(name: str):
    if name in ("SessionManager", "SessionManagerCallbacks"):
        from . import session_manager
        return getattr(session_manager, name)
    if name in ("StreamNormalizer", "create_replay_normalizer"):
        from . import normalizer
        return getattr(normalizer, name)
    if name == "load_config":
        from .yaml_config import load_config
        return load_config
    if name == "AgentProvider":
        from .providers.base import AgentProvider
        return AgentProvider
    if name == "ClaudeCliProvider":
        from .providers.claude_cli import ClaudeCliProvider
        return ClaudeCliProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
