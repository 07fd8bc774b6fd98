"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via OVERSEER_* env vars,
or load a YAML file with yaml_config.load_config().
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# Optional observer callback. Observers are synchronous; a raising
# observer is logged and never propagates into the session engine.
ObserverCallback = Callable[..., None]


def fire_event(callback: ObserverCallback | None, *args: Any) -> None:
    """Invoke an observer callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.warning(
            "Observer callback %s raised", getattr(callback, "__name__", callback),
            exc_info=True,
        )


DEFAULT_TIMEOUT_MESSAGE = (
    "The time limit for this session has been reached. Finish what you are "
    "doing, save any progress, and stop."
)


@dataclass
class AutoResumeConfig:
    """Auto-resume control loop settings."""

    enabled: bool = False
    # 0 disables the timeout.
    timeout_minutes: float = 0
    message: str = "Continue."
    timeout_message: str = DEFAULT_TIMEOUT_MESSAGE
    force_stop_delay_seconds: float = 300
    resume_delay_seconds: float = 3.0
    max_consecutive_errors: int = 3


@dataclass
class PermissionsConfig:
    """Tools the agent may use without asking."""

    auto_allow_tools: list[str] = field(default_factory=list)
    # e.g. "mcp__github__"
    allowed_mcp_prefixes: list[str] = field(default_factory=list)
    allowed_web_domains: list[str] = field(default_factory=list)


@dataclass
class SessionConfig:
    """Settings for one supervised agent."""

    initial_prompt: str = ""
    system_prompt_append: str = ""
    # Keyed by server name, values are Claude CLI --mcp-config entries.
    mcp_servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    max_log_entries: int = 5000
    model: str | None = None
    workspace_path: str = ""
    # Language the agent should use for its replies and notes.
    language: str = "English"
    log_dir: str = str(Path.home() / ".overseer" / "logs")
    dangerously_skip_permissions: bool = False
    claude_command: str = "claude"
    auto_resume: AutoResumeConfig = field(default_factory=AutoResumeConfig)

    @classmethod
    def from_env(cls, base: SessionConfig | None = None) -> SessionConfig:
        """Apply OVERSEER_* environment variables over *base* (or defaults)."""
        config = base or cls()
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("OVERSEER_")
        }
        if env_vars:
            logger.info(
                "SessionConfig.from_env: OVERSEER_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("SessionConfig.from_env: no OVERSEER_* env vars set")
            return config

        config.model = os.getenv("OVERSEER_MODEL", config.model or "") or None
        config.workspace_path = os.getenv(
            "OVERSEER_WORKSPACE", config.workspace_path
        )
        config.language = os.getenv("OVERSEER_LANGUAGE", config.language)
        config.log_dir = os.getenv("OVERSEER_LOG_DIR", config.log_dir)
        config.claude_command = os.getenv(
            "OVERSEER_CLAUDE_COMMAND", config.claude_command
        )
        config.max_log_entries = int(os.getenv(
            "OVERSEER_MAX_LOG_ENTRIES", str(config.max_log_entries)
        ))
        if "OVERSEER_SKIP_PERMISSIONS" in os.environ:
            config.dangerously_skip_permissions = (
                os.environ["OVERSEER_SKIP_PERMISSIONS"].lower()
                in {"1", "true", "yes"}
            )
        if "OVERSEER_AUTO_RESUME" in os.environ:
            config.auto_resume.enabled = (
                os.environ["OVERSEER_AUTO_RESUME"].lower() in {"1", "true", "yes"}
            )
        config.auto_resume.timeout_minutes = float(os.getenv(
            "OVERSEER_AUTO_RESUME_TIMEOUT",
            str(config.auto_resume.timeout_minutes),
        ))
        config.auto_resume.message = os.getenv(
            "OVERSEER_AUTO_RESUME_MESSAGE", config.auto_resume.message
        )
        config.auto_resume.force_stop_delay_seconds = float(os.getenv(
            "OVERSEER_FORCE_STOP_DELAY",
            str(config.auto_resume.force_stop_delay_seconds),
        ))

        logger.debug(
            "SessionConfig.from_env: model=%s log_dir=%s auto_resume=%s",
            config.model, config.log_dir, config.auto_resume.enabled,
        )
        return config
