"""
Tests for bridge configuration.
"""

import json

import pytest
import yaml

from script_bridge.core.config import BridgeConfig
from script_bridge.core.exceptions import ConfigurationError


class TestBridgeConfig:
    """Tests for BridgeConfig defaults and parsing."""

    def test_defaults(self):
        config = BridgeConfig()
        assert config.runtime.name == "local"
        assert config.runtime.max_output_chars == 50_000
        assert config.session.timeout_seconds == 300.0
        assert config.session.input_timeout_seconds is None
        assert config.session.echo_input is True
        assert config.logging.level == "WARNING"

    def test_from_dict_ignores_unknown_keys(self):
        config = BridgeConfig.from_dict(
            {"runtime": {"name": "monty", "flavour": "rust"}, "extra": {"a": 1}}
        )
        assert config.runtime.name == "monty"

    def test_from_dict_rejects_non_mapping_section(self):
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            BridgeConfig.from_dict({"session": ["timeout"]})

    def test_from_dict_rejects_non_mapping_root(self):
        with pytest.raises(ConfigurationError):
            BridgeConfig.from_dict(["runtime"])

    def test_load_yaml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SCRIPT_BRIDGE_TIMEOUT", raising=False)
        path = tmp_path / "bridge.yaml"
        path.write_text(yaml.safe_dump({"session": {"timeout_seconds": 12, "echo_input": False}}))

        config = BridgeConfig.load_from_file(path)
        assert config.session.timeout_seconds == 12
        assert config.session.echo_input is False

    def test_load_json(self, tmp_path):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps({"logging": {"level": "DEBUG", "rich": False}}))

        config = BridgeConfig.load_from_file(path)
        assert config.logging.level == "DEBUG"
        assert config.logging.rich is False

    def test_load_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert BridgeConfig.load_from_file(path).runtime.name == "local"

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            BridgeConfig.load_from_file(tmp_path / "nope.yaml")

    def test_load_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("session: [unclosed")
        with pytest.raises(ConfigurationError, match="Failed to load"):
            BridgeConfig.load_from_file(path)

    def test_save_and_reload(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SCRIPT_BRIDGE_RUNTIME", raising=False)
        config = BridgeConfig()
        config.runtime.name = "monty"
        config.session.input_timeout_seconds = 30.0
        path = tmp_path / "nested" / "bridge.yaml"

        config.save_to_file(path)
        loaded = BridgeConfig.load_from_file(path)
        assert loaded.runtime.name == "monty"
        assert loaded.session.input_timeout_seconds == 30.0


class TestEnvOverrides:
    """Tests for SCRIPT_BRIDGE_* environment overrides."""

    def test_overrides_apply(self):
        config = BridgeConfig()
        config.apply_env_overrides(
            {
                "SCRIPT_BRIDGE_RUNTIME": "Monty",
                "SCRIPT_BRIDGE_TIMEOUT": "2.5",
                "SCRIPT_BRIDGE_LOG_LEVEL": "debug",
            }
        )
        assert config.runtime.name == "monty"
        assert config.session.timeout_seconds == 2.5
        assert config.logging.level == "DEBUG"

    def test_zero_timeout_disables(self):
        config = BridgeConfig()
        config.apply_env_overrides({"SCRIPT_BRIDGE_TIMEOUT": "0"})
        assert config.session.timeout_seconds is None

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError, match="SCRIPT_BRIDGE_TIMEOUT"):
            BridgeConfig().apply_env_overrides({"SCRIPT_BRIDGE_TIMEOUT": "soon"})

    def test_empty_environment_changes_nothing(self):
        config = BridgeConfig()
        config.apply_env_overrides({})
        assert config == BridgeConfig()
