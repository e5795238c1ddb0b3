"""Tests for configuration management."""

import tempfile
from pathlib import Path

import pytest
import yaml

from toolbridge.validation.config import (
    Config,
    ConfigError,
    ToolBridgeConfig,
    default_server_command,
    parse_model_name,
)


class TestConfig:
    """Tests for Config class."""

    @pytest.fixture
    def temp_config_dir(self):
        """Create a temporary config directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_deep_merge(self):
        """Test deep merging of dictionaries."""
        config = Config()

        base = {
            "a": 1,
            "b": {"c": 2, "d": 3},
            "e": [1, 2, 3],
        }

        override = {
            "b": {"c": 10, "f": 5},
            "g": "new",
        }

        result = config._deep_merge(base, override)

        assert result["a"] == 1
        assert result["b"]["c"] == 10
        assert result["b"]["d"] == 3
        assert result["b"]["f"] == 5
        assert result["e"] == [1, 2, 3]
        assert result["g"] == "new"

    def test_get_merged_config(self):
        """Test getting merged configuration."""
        global_config = {
            "model": {"name": "llama3.1:8b", "think": True},
            "loop": {"max_rounds": 3},
        }

        local_config = {
            "model": {"name": "qwen3:4b"},
        }

        config = Config(global_config=global_config, local_config=local_config)
        merged = config.get_merged_config()

        # Local should override global
        assert merged["model"]["name"] == "qwen3:4b"
        # Global should be preserved
        assert merged["model"]["think"] is True
        assert merged["loop"]["max_rounds"] == 3

    def test_environment_beats_files(self):
        """Test that environment variables override both config files."""
        config = Config(
            global_config={"model": {"base_url": "http://global:11434"}},
            local_config={"server": {"command": "local-server"}},
            environ={
                "OLLAMA_BASE_URL": "http://env:11434",
                "TOOLBRIDGE_SERVER_COMMAND": "env-server --stdio",
                "TOOLBRIDGE_LOG_LEVEL": "DEBUG",
            },
        )

        merged = config.merged
        assert merged.model.base_url == "http://env:11434"
        assert merged.server.command == "env-server --stdio"
        assert merged.logging.level == "DEBUG"

    def test_empty_environment_values_are_ignored(self):
        config = Config(global_config={"model": {"name": "kept"}}, environ={"TOOLBRIDGE_MODEL": ""})
        assert config.merged.model.name == "kept"

    def test_override_beats_environment(self):
        """Test that process overrides win and ignore None values."""
        config = Config(environ={"TOOLBRIDGE_MODEL": "env-model"})

        config.override("model", name="flag-model", base_url=None)
        config.override("loop", max_rounds=2)

        merged = config.merged
        assert merged.model.name == "flag-model"
        assert merged.model.base_url is None
        assert merged.loop.max_rounds == 2

    def test_override_resets_cache(self):
        config = Config()
        assert config.merged.model.name == "qwen3:30b-a3b"
        config.override("model", name="other")
        assert config.merged.model.name == "other"

    def test_set_model(self):
        """Test setting the model."""
        config = Config(global_config={}, local_config={})

        config.set_model("llama3.1:8b", global_=False)
        assert config._local_config["model"] == {"name": "llama3.1:8b"}

        config.set_model("openai/gpt-4o-mini", global_=True)
        assert config._global_config["model"] == {"provider": "openai", "name": "gpt-4o-mini"}

    def test_invalid_config_raises(self):
        config = Config(global_config={"loop": {"max_rounds": 0}})
        with pytest.raises(ConfigError):
            config.merged

    def test_load_yaml(self, temp_config_dir):
        path = temp_config_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"model": {"name": "from-file"}}))

        assert Config._load_yaml(path) == {"model": {"name": "from-file"}}
        assert Config._load_yaml(temp_config_dir / "missing.yaml") == {}
        assert Config._load_yaml(None) == {}

    def test_load_yaml_empty_file(self, temp_config_dir):
        path = temp_config_dir / "config.yaml"
        path.write_text("")
        assert Config._load_yaml(path) == {}

    def test_load_yaml_rejects_non_mapping(self, temp_config_dir):
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            Config._load_yaml(path)

    def test_load_yaml_rejects_broken_yaml(self, temp_config_dir):
        path = temp_config_dir / "config.yaml"
        path.write_text("model: [unclosed\n")
        with pytest.raises(ConfigError):
            Config._load_yaml(path)

    def test_save_and_create_default(self, temp_config_dir, monkeypatch):
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_config_dir / "global")
        monkeypatch.chdir(temp_config_dir)

        created = Config.create_default_global()
        data = yaml.safe_load(created.read_text())
        assert data["loop"]["max_rounds"] == 5
        assert data["server"]["command"] == default_server_command()

        config = Config(global_config=data)
        config.set_model("qwen3:4b", global_=True)
        config.save()

        saved = yaml.safe_load((temp_config_dir / "global" / "config.yaml").read_text())
        assert saved["model"]["name"] == "qwen3:4b"


class TestParseModelName:
    def test_provider_prefix(self):
        assert parse_model_name("ollama/llama3.1:8b") == {"provider": "ollama", "name": "llama3.1:8b"}

    def test_bare_name(self):
        assert parse_model_name("qwen3:30b-a3b") == {"name": "qwen3:30b-a3b"}

    def test_unknown_prefix_is_part_of_name(self):
        assert parse_model_name("library/model") == {"name": "library/model"}


class TestToolBridgeConfig:
    """Tests for ToolBridgeConfig schema."""

    def test_default_config(self):
        """Test creating default configuration."""
        config = ToolBridgeConfig()

        assert config.model.provider == "ollama"
        assert config.model.think is False
        assert config.loop.max_rounds == 5
        assert config.server.handshake_timeout == 30
        assert "toolbridge.server" in config.server.command

    def test_config_with_sections(self):
        """Test configuration with explicit sections."""
        config = ToolBridgeConfig(
            model={"provider": "openai", "name": "gpt-4o-mini", "api_key": "test"},
            server={"command": "my-server", "env": {"A": "1"}},
        )

        assert config.model.provider == "openai"
        assert config.server.env == {"A": "1"}
