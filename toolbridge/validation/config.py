"""
ToolBridge Configuration - Configuration loading and validation.

This module provides the Config class for managing ToolBridge configuration
from both global (~/.toolbridge/config.yaml) and local (.toolbridge/config.yaml)
sources, with environment variable overrides on top.
"""

import os
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


def default_server_command() -> str:
    """Launch command for the bundled tool server under the current interpreter."""
    return f"{shlex.quote(sys.executable)} -m toolbridge.server"


KNOWN_PROVIDERS = ("ollama", "openai")


def parse_model_name(model_name: str) -> Dict[str, str]:
    """Split ``provider/model`` into config keys; ``llama3.1:8b`` keeps the current provider."""
    provider, _, name = model_name.partition("/")
    if name and provider in KNOWN_PROVIDERS:
        return {"provider": provider, "name": name}
    return {"name": model_name}


class ModelConfig(BaseModel):
    """Configuration for the chat model."""

    provider: str = "ollama"
    name: str = "qwen3:30b-a3b"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    think: bool = False
    timeout: float = 120


class ServerConfig(BaseModel):
    """Configuration for the tool server child process."""

    command: str = Field(default_factory=default_server_command)
    env: Dict[str, str] = Field(default_factory=dict)
    handshake_timeout: Optional[float] = 30
    call_timeout: Optional[float] = 120


class LoopConfig(BaseModel):
    """Configuration for the tool-calling loop."""

    max_rounds: int = Field(default=5, ge=1)


class LoggingConfig(BaseModel):
    level: str = "WARNING"


class ToolBridgeConfig(BaseModel):
    """Complete ToolBridge configuration schema."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# env var -> (section, key)
ENV_OVERRIDES = {
    "OLLAMA_BASE_URL": ("model", "base_url"),
    "TOOLBRIDGE_MODEL": ("model", "name"),
    "TOOLBRIDGE_PROVIDER": ("model", "provider"),
    "TOOLBRIDGE_API_KEY": ("model", "api_key"),
    "TOOLBRIDGE_SERVER_COMMAND": ("server", "command"),
    "TOOLBRIDGE_LOG_LEVEL": ("logging", "level"),
}


class Config:
    """
    ToolBridge configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.toolbridge/config.yaml
    - Local: .toolbridge/config.yaml (nearest one walking up from cwd)
    - Environment: OLLAMA_BASE_URL, TOOLBRIDGE_* variables

    Local configuration overrides global configuration; the environment
    overrides both, and ``override()`` values beat everything.

    Example:
        >>> config = Config.load()
        >>> config.merged.model.name
        'qwen3:30b-a3b'
        >>> config.set_model("llama3.1:8b", global_=True)
        >>> config.save()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".toolbridge"
    LOCAL_CONFIG_DIR = Path(".toolbridge")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            environ: Environment to read overrides from. Defaults to none,
                ``load()`` passes ``os.environ``.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._environ = environ or {}
        self._overrides: Dict[str, Any] = {}
        self._merged: Optional[ToolBridgeConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config, environ=dict(os.environ))

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        merged = self._deep_merge(self._global_config.copy(), self._local_config)
        merged = self._deep_merge(merged, self._env_config())
        return self._deep_merge(merged, self._overrides)

    def _env_config(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for var, (section, key) in ENV_OVERRIDES.items():
            value = self._environ.get(var)
            if value:
                overrides.setdefault(section, {})[key] = value
        return overrides

    @property
    def merged(self) -> ToolBridgeConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = ToolBridgeConfig(**self.get_merged_config())
            except (ValidationError, TypeError) as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def set_model(self, model_name: str, global_: bool = False) -> None:
        """
        Set the chat model in the global or local file config.

        Accepts ``provider/model`` or a bare model name for the current provider.
        """
        config = self._global_config if global_ else self._local_config
        config.setdefault("model", {}).update(parse_model_name(model_name))
        self._merged = None  # Reset cache

    def override(self, section: str, **values: Any) -> None:
        """
        Set values for this process only (command-line flags, REPL switches).

        Overrides beat the environment and both config files, and are never saved.
        """
        self._overrides.setdefault(section, {}).update(
            {key: value for key, value in values.items() if value is not None}
        )
        self._merged = None

    def save(self) -> None:
        """Save configuration to files."""
        self._save_yaml(self.GLOBAL_CONFIG_DIR / "config.yaml", self._global_config)

        local_path = self._find_local_config()
        if local_path:
            self._save_yaml(local_path, self._local_config)

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        """Save data to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "model": {
                "provider": "ollama",
                "name": "qwen3:30b-a3b",
                "base_url": "http://localhost:11434",  # or set OLLAMA_BASE_URL
                "think": False,
                "timeout": 120,
            },
            "server": {
                "command": default_server_command(),
                "handshake_timeout": 30,
                "call_timeout": 120,
            },
            "loop": {"max_rounds": 5},
            "logging": {"level": "WARNING"},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file
