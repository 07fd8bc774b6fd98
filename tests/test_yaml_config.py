"""Tests for YAML config loading and OVERSEER_* environment overrides."""

import os

import pytest
import yaml

from overseer.engine.config import AutoResumeConfig, SessionConfig
from overseer.engine.errors import ConfigError
from overseer.engine.yaml_config import load_config, merge_config


class TestLoadConfig:
    def test_missing_file_created_with_defaults(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        config = load_config(path)

        assert path.exists()
        written = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert written["max_log_entries"] == 5000
        assert written["auto_resume"]["enabled"] is False
        assert config.auto_resume == AutoResumeConfig()

    def test_partial_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "model: sonnet\n"
            "initial_prompt: Work through TODO.md\n"
            "mcp_servers:\n"
            "  github:\n"
            "    type: http\n"
            "    url: https://example.invalid/mcp/\n"
            "permissions:\n"
            "  allowed_mcp_prefixes: [mcp__github__]\n"
            "auto_resume:\n"
            "  enabled: true\n"
            "  timeout_minutes: 120\n",
            encoding="utf-8",
        )
        config = load_config(path)

        assert config.model == "sonnet"
        assert config.initial_prompt == "Work through TODO.md"
        assert config.mcp_servers["github"]["type"] == "http"
        assert config.permissions.allowed_mcp_prefixes == ["mcp__github__"]
        assert config.permissions.auto_allow_tools == []
        assert config.auto_resume.enabled is True
        assert config.auto_resume.timeout_minutes == 120
        assert config.auto_resume.message == "Continue."
        assert config.max_log_entries == 5000

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path).language == "English"

    def test_broken_yaml_falls_back(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("model: [unclosed\n", encoding="utf-8")
        config = load_config(path)
        assert config.model is None

    def test_broken_yaml_strict_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("model: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path, strict=True)

    def test_non_mapping_strict_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path, strict=True)
        assert "mapping" in str(exc_info.value)

    def test_log_dir_expanded(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("log_dir: ~/overseer-logs\n", encoding="utf-8")
        assert not load_config(path).log_dir.startswith("~")


class TestMergeConfig:
    def test_unknown_keys_ignored(self):
        config = merge_config(SessionConfig(), {"no_such_key": 1, "auto_resume": {"bogus": True}})
        assert not hasattr(config, "no_such_key")
        assert config.auto_resume == AutoResumeConfig()

    def test_defaults_not_mutated(self):
        defaults = SessionConfig()
        merge_config(defaults, {"mcp_servers": {"a": {"command": "x"}}, "auto_resume": {"enabled": True}})
        assert defaults.mcp_servers == {}
        assert defaults.auto_resume.enabled is False

    def test_mcp_servers_merged_by_name(self):
        defaults = SessionConfig(mcp_servers={"a": {"command": "one"}})
        config = merge_config(defaults, {"mcp_servers": {"b": {"command": "two"}}})
        assert set(config.mcp_servers) == {"a", "b"}


class TestFromEnv:
    def test_no_env_keeps_base(self, monkeypatch):
        for key in list(os.environ):
            if key.startswith("OVERSEER_"):
                monkeypatch.delenv(key)
        base = SessionConfig(model="opus")
        assert SessionConfig.from_env(base).model == "opus"

    def test_overrides_applied(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OVERSEER_MODEL", "haiku")
        monkeypatch.setenv("OVERSEER_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("OVERSEER_AUTO_RESUME", "true")
        monkeypatch.setenv("OVERSEER_AUTO_RESUME_TIMEOUT", "45")
        monkeypatch.setenv("OVERSEER_SKIP_PERMISSIONS", "0")
        monkeypatch.setenv("OVERSEER_MAX_LOG_ENTRIES", "100")

        config = SessionConfig.from_env()

        assert config.model == "haiku"
        assert config.log_dir == str(tmp_path)
        assert config.auto_resume.enabled is True
        assert config.auto_resume.timeout_minutes == 45.0
        assert config.dangerously_skip_permissions is False
        assert config.max_log_entries == 100
