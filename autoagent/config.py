"""Configuration management for autoagent.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
defaults for the gateway, model settings, the run loop and logging.

Example settings.yaml::

    gateway: chat                 # or "echo"
    api_url: https://api.deepseek.com/v1/chat/completions
    api_key_env: DEEPSEEK_API_KEY
    model:
      name: deepseek-chat
      temperature: 0.8
      max_loops: 25
    agent:
      summarize: true
      create_additional_tasks: false
      task_selection_policy: oldest_first
    logging:
      level: INFO
      subsystem_levels: {gateway: DEBUG}

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv

from .agent.gateway import DEFAULT_API_URL
from .agent.models import DEFAULT_MODEL_NAME, ModelSettings
from .agent.selection import DEFAULT_POLICY, POLICIES

logger = structlog.get_logger("autoagent.agent")

GATEWAY_KINDS = ("echo", "chat")


class Config:
    """Central configuration manager for autoagent.

    Loads settings.yaml and .env from the config directory. Provides
    typed property accessors for every configurable subsystem.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = config_dir

        env_file = config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str) -> dict:
        section = self.settings.get(name, {})
        return section if isinstance(section, dict) else {}

    def validate(self):
        """Validate settings at startup.

        Logs errors for bad values but does not raise; the property
        getters fall back to defaults.
        """
        if self.settings.get("gateway", "echo") not in GATEWAY_KINDS:
            logger.error(
                "config_invalid_value",
                key="gateway",
                value=self.settings.get("gateway"),
                valid=", ".join(GATEWAY_KINDS),
            )

        model = self._section("model")
        temperature = model.get("temperature")
        if temperature is not None and (
            not isinstance(temperature, (int, float)) or not 0.0 <= temperature <= 1.0
        ):
            logger.error(
                "config_invalid_value", key="model.temperature", value=temperature, valid="0-1"
            )
        loops = model.get("max_loops")
        if loops is not None and (not isinstance(loops, int) or loops < 1):
            logger.error(
                "config_invalid_value", key="model.max_loops", value=loops, valid=">= 1"
            )

        policy = self._section("agent").get("task_selection_policy")
        if policy is not None and policy not in POLICIES:
            logger.error(
                "config_invalid_value",
                key="agent.task_selection_policy",
                value=policy,
                valid=", ".join(sorted(POLICIES)),
            )

        if self.gateway_kind == "chat" and not self.gateway_api_key:
            logger.warning("gateway_api_key_not_found", env=self.api_key_env)

    # ========== Gateway ==========

    @property
    def gateway_kind(self) -> str:
        """Which gateway to build: "echo" (default) or "chat"."""
        kind = self.settings.get("gateway", "echo")
        return kind if kind in GATEWAY_KINDS else "echo"

    @property
    def gateway_api_url(self) -> str:
        """Chat completions URL. Env var AUTOAGENT_API_URL takes precedence."""
        return os.environ.get("AUTOAGENT_API_URL") or self.settings.get("api_url", DEFAULT_API_URL)

    @property
    def api_key_env(self) -> str:
        """Name of the env var holding the provider key (default DEEPSEEK_API_KEY)."""
        return self.settings.get("api_key_env", "DEEPSEEK_API_KEY")

    @property
    def gateway_api_key(self) -> str:
        return os.environ.get(self.api_key_env, "")

    @property
    def gateway_timeout(self) -> int:
        """Per-request gateway timeout in seconds (default 60)."""
        return self.settings.get("gateway_timeout", 60)

    # ========== Model ==========

    @property
    def model_name(self) -> str:
        return self._section("model").get("name", DEFAULT_MODEL_NAME)

    @property
    def temperature(self) -> float:
        value = self._section("model").get("temperature", 0.8)
        if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            return 0.8
        return float(value)

    @property
    def max_tokens(self) -> Optional[int]:
        """Override for the model's token limit (default: per-model table)."""
        return self._section("model").get("max_tokens")

    @property
    def max_loops(self) -> int:
        """Max analyze/execute loops per run (default 25)."""
        value = self._section("model").get("max_loops", 25)
        if not isinstance(value, int) or value < 1:
            return 25
        return value

    @property
    def language(self) -> str:
        return self.settings.get("language", "en")

    # ========== Agent ==========

    @property
    def summarize_enabled(self) -> bool:
        return bool(self._section("agent").get("summarize", True))

    @property
    def create_additional_tasks(self) -> bool:
        return bool(self._section("agent").get("create_additional_tasks", False))

    @property
    def task_selection_policy(self) -> str:
        policy = self._section("agent").get("task_selection_policy", DEFAULT_POLICY)
        return policy if policy in POLICIES else DEFAULT_POLICY

    def model_settings(self) -> ModelSettings:
        """Build the ModelSettings a run starts with."""
        return ModelSettings(
            language=self.language,
            custom_api_key="",
            custom_model_name=self.model_name,
            custom_temperature=self.temperature,
            custom_max_loops=self.max_loops,
            max_tokens=self.max_tokens,
            create_additional_tasks=self.create_additional_tasks,
        )

    # ========== Logging ==========

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        return self._section("logging").get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"gateway": "DEBUG"}."""
        return self._section("logging").get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        return self._section("logging").get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        return self._section("logging").get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
