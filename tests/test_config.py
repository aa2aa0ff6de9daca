"""
Tests for configuration loading
"""
import logging

import pytest

from code_audit.core import config as config_module
from code_audit.core.config import (
    AuditorSettings,
    ServerConfig,
    build_config,
    dump_config,
    load_config,
)
from code_audit.core.errors import ConfigError
from code_audit.core.log import configure_logging


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No env overrides and no config files outside tmp_path."""
    for var in ("OLLAMA_HOST", "CODE_AUDIT_LOG_LEVEL", "CODE_AUDIT_MAX_CONCURRENT", "CODE_AUDIT_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "GLOBAL_CONFIG_FILE", tmp_path / "missing" / "config.yaml")
    return tmp_path


class TestDefaults:
    def test_defaults(self):
        config = ServerConfig()

        assert config.ollama.host == "http://localhost:11434"
        assert config.ollama.timeout == 30
        assert config.ollama.retry_attempts == 3
        assert config.performance.max_concurrent_audits == 3
        assert config.performance.request_timeout == 300
        assert config.models.selection_strategy == "default"
        assert set(config.auditors) == {
            "security", "completeness", "performance", "quality",
            "architecture", "testing", "documentation",
        }
        assert config.auditors["security"].severity == ["critical", "high", "medium"]

    def test_load_without_files_uses_defaults(self, clean_env):
        assert load_config() == ServerConfig()


class TestBuildConfig:
    def test_partial_override_keeps_other_defaults(self):
        config = build_config({
            "ollama": {"host": "http://gpu-box:11434/"},
            "auditors": {"security": {"enabled": False}},
        })

        assert config.ollama.host == "http://gpu-box:11434"
        assert config.ollama.timeout == 30
        assert config.auditors["security"].enabled is False
        assert config.auditors["security"].severity == ["critical", "high", "medium"]
        assert config.auditors["quality"].enabled is True

    @pytest.mark.parametrize("data", [
        {"ollama": {"host": "localhost:11434"}},
        {"ollama": {"retry_attempts": 0}},
        {"auditors": {"style": {"enabled": True}}},
        {"models": {"selection_strategy": "random"}},
        {"performance": {"max_concurrent_audits": 0}},
        {"auditors": {"security": {"severity": ["urgent"]}}},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ConfigError) as exc:
            build_config(data)
        assert exc.value.code == "INVALID_CONFIG"
        assert exc.value.details

    def test_log_level_aliases(self):
        assert build_config({"logging": {"level": "WARN"}}).logging.level == "warning"

    def test_auditor_settings_merge(self):
        settings = AuditorSettings(rules={"a": True}, thresholds={"x": 1.0})
        merged = settings.merged({"rules": {"b": False}, "severity": ["high"]})

        assert merged.rules == {"a": True, "b": False}
        assert merged.thresholds == {"x": 1.0}
        assert merged.severity == ["high"]
        assert settings.rules == {"a": True}


class TestLoadConfig:
    def test_yaml_file(self, clean_env):
        path = clean_env / "audit.yaml"
        path.write_text(
            "ollama:\n"
            "  host: http://ollama:11434\n"
            "performance:\n"
            "  max_concurrent_audits: 5\n"
            "models:\n"
            "  selection_strategy: quality\n"
        )

        config = load_config(path)

        assert config.ollama.host == "http://ollama:11434"
        assert config.performance.max_concurrent_audits == 5
        assert config.models.selection_strategy == "quality"

    def test_project_file_is_discovered(self, clean_env):
        (clean_env / "code-audit.yaml").write_text("logging:\n  level: debug\n")
        assert load_config().logging.level == "debug"

    def test_env_file_pointer(self, clean_env, monkeypatch):
        path = clean_env / "elsewhere.yaml"
        path.write_text("server:\n  port: 4000\n")
        monkeypatch.setenv("CODE_AUDIT_CONFIG", str(path))

        assert load_config().server.port == 4000

    def test_env_overrides_win_over_file(self, clean_env, monkeypatch):
        path = clean_env / "audit.yaml"
        path.write_text("ollama:\n  host: http://file:11434\n")
        monkeypatch.setenv("OLLAMA_HOST", "http://env:11434")
        monkeypatch.setenv("CODE_AUDIT_MAX_CONCURRENT", "7")
        monkeypatch.setenv("CODE_AUDIT_LOG_LEVEL", "ERROR")

        config = load_config(path)

        assert config.ollama.host == "http://env:11434"
        assert config.performance.max_concurrent_audits == 7
        assert config.logging.level == "error"

    def test_missing_file(self, clean_env):
        with pytest.raises(ConfigError):
            load_config(clean_env / "nope.yaml")

    def test_malformed_yaml(self, clean_env):
        path = clean_env / "bad.yaml"
        path.write_text("ollama: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_mapping_yaml(self, clean_env):
        path = clean_env / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_dump_then_load(self, clean_env):
        original = build_config({"performance": {"request_timeout": 60}})
        path = dump_config(original, clean_env / "nested" / "config.yaml")

        assert load_config(path) == original


def test_configure_logging_quiets_http_libraries():
    configure_logging(build_config({"logging": {"level": "debug"}}).logging)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
