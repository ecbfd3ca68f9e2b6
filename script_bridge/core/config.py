"""
Configuration management for Script Bridge.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


@dataclass
class RuntimeConfig:
    """Interpreter runtime configuration."""

    name: str = "local"  # local | monty
    max_output_chars: int = 50_000
    isolate_runs: bool = True  # fresh namespace for every run
    monty_max_memory: int | None = None
    monty_max_allocations: int | None = None
    monty_type_check: bool = False


@dataclass
class SessionConfig:
    """Per-session execution limits."""

    timeout_seconds: float | None = 300.0
    input_timeout_seconds: float | None = None
    echo_input: bool = True
    abort_grace_seconds: float = 2.0


@dataclass
class LoggingConfig:
    """Logging output configuration."""

    level: str = "WARNING"
    rich: bool = True


@dataclass
class BridgeConfig:
    """Main bridge configuration."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BridgeConfig":
        """Build a config from plain dicts, ignoring unknown keys."""
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        return cls(
            runtime=_build_section(RuntimeConfig, data.get("runtime")),
            session=_build_section(SessionConfig, data.get("session")),
            logging=_build_section(LoggingConfig, data.get("logging")),
        )

    @classmethod
    def load_from_file(cls, config_path: Path) -> "BridgeConfig":
        """Load configuration from a YAML or JSON file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path) as f:
                if config_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        config = cls.from_dict(data)
        config.apply_env_overrides()
        return config

    def apply_env_overrides(self, environ: dict[str, str] | None = None) -> None:
        """Override settings from ``SCRIPT_BRIDGE_*`` environment variables."""
        env = os.environ if environ is None else environ

        runtime = env.get("SCRIPT_BRIDGE_RUNTIME")
        if runtime:
            self.runtime.name = runtime.strip().lower()

        timeout = env.get("SCRIPT_BRIDGE_TIMEOUT")
        if timeout:
            try:
                value = float(timeout)
            except ValueError as e:
                raise ConfigurationError(f"Invalid SCRIPT_BRIDGE_TIMEOUT: {timeout!r}") from e
            self.session.timeout_seconds = value if value > 0 else None

        level = env.get("SCRIPT_BRIDGE_LOG_LEVEL")
        if level:
            self.logging.level = level.strip().upper()

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to a YAML or JSON file."""
        config_path = Path(config_path)
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            data = asdict(self)
            with open(config_path, "w") as f:
                if config_path.suffix.lower() == ".json":
                    json.dump(data, f, indent=2)
                else:
                    yaml.dump(data, f, default_flow_style=False, indent=2)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}") from e


def _build_section(section_cls: type, raw: Any) -> Any:
    if raw is None:
        return section_cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Section '{section_cls.__name__}' must be a mapping, got {type(raw).__name__}"
        )
    valid = {f.name for f in fields(section_cls)}
    try:
        return section_cls(**{k: v for k, v in raw.items() if k in valid})
    except TypeError as e:
        raise ConfigurationError(f"Invalid {section_cls.__name__}: {e}") from e
