"""Tests for YAML/env configuration loading."""

from pathlib import Path

import yaml

from autoagent.agent.models import ModelSettings
from autoagent.config import Config


def _write_settings(config_dir: Path, settings: dict) -> Config:
    (config_dir / "settings.yaml").write_text(yaml.safe_dump(settings))
    return Config(config_dir=config_dir)


def test_defaults_without_settings_file(tmp_path, monkeypatch):
    """Without settings.yaml every property should use its default."""
    monkeypatch.delenv("AUTOAGENT_API_URL", raising=False)
    config = Config(config_dir=tmp_path)

    assert config.settings == {}
    assert config.gateway_kind == "echo"
    assert config.gateway_api_url == "https://api.deepseek.com/v1/chat/completions"
    assert config.api_key_env == "DEEPSEEK_API_KEY"
    assert config.gateway_timeout == 60
    assert config.model_name == "deepseek-chat"
    assert config.temperature == 0.8
    assert config.max_loops == 25
    assert config.summarize_enabled is True
    assert config.create_additional_tasks is False
    assert config.task_selection_policy == "oldest_first"
    assert config.logging_level == "INFO"


def test_settings_file_values(tmp_path):
    """Values from settings.yaml should override the defaults."""
    config = _write_settings(
        tmp_path,
        {
            "gateway": "chat",
            "language": "de",
            "model": {"name": "gpt-4", "temperature": 0.2, "max_loops": 5, "max_tokens": 2000},
            "agent": {
                "summarize": False,
                "create_additional_tasks": True,
                "task_selection_policy": "newest_first",
            },
            "logging": {"level": "DEBUG", "subsystem_levels": {"gateway": "WARNING"}},
            "log_dir": str(tmp_path / "logs"),
        },
    )

    assert config.gateway_kind == "chat"
    assert config.model_name == "gpt-4"
    assert config.temperature == 0.2
    assert config.max_loops == 5
    assert config.max_tokens == 2000
    assert config.summarize_enabled is False
    assert config.create_additional_tasks is True
    assert config.task_selection_policy == "newest_first"
    assert config.logging_subsystem_levels == {"gateway": "WARNING"}
    assert config.log_dir == tmp_path / "logs"


def test_invalid_values_fall_back_to_defaults(tmp_path):
    """validate() should replace out-of-range values with defaults."""
    config = _write_settings(
        tmp_path,
        {
            "gateway": "carrier-pigeon",
            "model": {"temperature": 3, "max_loops": 0},
            "agent": {"task_selection_policy": "random"},
        },
    )

    config.validate()

    assert config.gateway_kind == "echo"
    assert config.temperature == 0.8
    assert config.max_loops == 25
    assert config.task_selection_policy == "oldest_first"


def test_non_mapping_sections_are_ignored(tmp_path):
    """A section that is not a mapping should not break lookups."""
    config = _write_settings(tmp_path, {"model": "deepseek-chat", "agent": ["x"]})

    assert config.model_name == "deepseek-chat"
    assert config.summarize_enabled is True


def test_api_url_env_override(tmp_path, monkeypatch):
    """AUTOAGENT_API_URL should win over the settings file."""
    monkeypatch.setenv("AUTOAGENT_API_URL", "https://gateway.internal.example/v1/chat/completions")
    config = _write_settings(tmp_path, {"api_url": "https://api.example.com/v1/chat/completions"})

    assert config.gateway_api_url == "https://gateway.internal.example/v1/chat/completions"


def test_api_key_read_from_env_file(tmp_path, monkeypatch):
    """The gateway key should be loaded from .env in the config dir."""
    monkeypatch.delenv("AUTOAGENT_TEST_KEY", raising=False)
    (tmp_path / ".env").write_text("AUTOAGENT_TEST_KEY=sk-from-dotenv\n")
    config = _write_settings(tmp_path, {"api_key_env": "AUTOAGENT_TEST_KEY"})

    assert config.gateway_api_key == "sk-from-dotenv"
    monkeypatch.delenv("AUTOAGENT_TEST_KEY", raising=False)


def test_model_settings_built_from_config(tmp_path):
    """model_settings() should carry the configured model values."""
    config = _write_settings(
        tmp_path,
        {"language": "fr", "model": {"name": "gpt-4", "max_loops": 3},
         "agent": {"create_additional_tasks": True}},
    )

    settings = config.model_settings()

    assert isinstance(settings, ModelSettings)
    assert settings.language == "fr"
    assert settings.custom_model_name == "gpt-4"
    assert settings.custom_max_loops == 3
    assert settings.create_additional_tasks is True
    assert settings.custom_api_key == ""
