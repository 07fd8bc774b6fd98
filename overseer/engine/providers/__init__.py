"""Agent process providers."""
from .base import AgentProvider, ProviderCallbacks
from .claude_cli import ClaudeCliProvider

__all__ = [
    "AgentProvider",
    "ProviderCallbacks",
    "ClaudeCliProvider",
]
