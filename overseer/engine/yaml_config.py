"""YAML configuration loader.

Loads a single YAML file and merges it over SessionConfig defaults.
A missing file is created with the defaults so users have something
to edit.

Example YAML:
    initial_prompt: Work through the open issues in TODO.md.
    system_prompt_append: |
      Commit after every finished task.
    model: sonnet
    workspace_path: /path/to/project
    language: English
    log_dir: ~/.overseer/logs
    max_log_entries: 5000

    mcp_servers:
      github:
        type: http
        url: https://api.githubcopilot.com/mcp/

    permissions:
      auto_allow_tools: ["Bash(jq:*)"]
      allowed_mcp_prefixes: [mcp__github__]
      allowed_web_domains: [docs.python.org]

    auto_resume:
      enabled: true
      timeout_minutes: 120
      message: Continue.
      force_stop_delay_seconds: 300
"""
from __future__ import annotations

import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import yaml

from .config import AutoResumeConfig, PermissionsConfig, SessionConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


def _merge_fields(target: Any, partial: dict[str, Any], section: str) -> None:
    valid = {f.name for f in fields(target)}
    for key, value in partial.items():
        if key not in valid:
            logger.warning("Ignoring unknown config key %s.%s", section, key)
            continue
        if value is None:
            continue
        setattr(target, key, value)


def merge_config(defaults: SessionConfig, partial: dict[str, Any]) -> SessionConfig:
    """Merge a parsed YAML mapping over *defaults*.

    ``mcp_servers`` merges by server name; ``permissions`` and
    ``auto_resume`` merge field by field. Other keys replace.
    """
    config = SessionConfig(**{
        f.name: getattr(defaults, f.name) for f in fields(defaults)
    })
    config.mcp_servers = dict(defaults.mcp_servers)
    config.permissions = PermissionsConfig(**asdict(defaults.permissions))
    config.auto_resume = AutoResumeConfig(**asdict(defaults.auto_resume))

    top = dict(partial)
    servers = top.pop("mcp_servers", None) or {}
    permissions = top.pop("permissions", None) or {}
    auto_resume = top.pop("auto_resume", None) or {}

    for name, server in servers.items():
        config.mcp_servers[name] = server
    _merge_fields(config.permissions, permissions, "permissions")
    _merge_fields(config.auto_resume, auto_resume, "auto_resume")
    _merge_fields(config, top, "config")

    config.log_dir = str(Path(config.log_dir).expanduser())
    return config


def write_default_config(path: Path, config: SessionConfig | None = None) -> None:
    data = asdict(config or SessionConfig())
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


def load_config(path: str | Path, strict: bool = False) -> SessionConfig:
    """Load *path* merged over defaults.

    Missing files are created with defaults. Parse errors fall back to
    defaults with a warning, or raise ConfigError when *strict*.
    """
    path = Path(path).expanduser()
    defaults = SessionConfig()

    if not path.exists():
        logger.info("Config file %s not found, creating with defaults", path)
        try:
            write_default_config(path, defaults)
        except OSError as exc:
            logger.warning("Failed to create default config %s: %s", path, exc)
        return defaults

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigError(str(path), "top level must be a mapping")
    except (OSError, yaml.YAMLError, ConfigError) as exc:
        if strict:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(str(path), str(exc)) from exc
        logger.warning("Failed to parse %s, using defaults: %s", path, exc)
        return defaults

    logger.info(
        "load_config: read %s (keys: %s)",
        path, ", ".join(sorted(raw)) if raw else "(empty)",
    )
    return merge_config(defaults, raw)
