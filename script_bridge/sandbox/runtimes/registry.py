"""
Runtime registry and health checks for the embedded interpreter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ...core.exceptions import ConfigurationError
from ...core.logging import get_logger
from .base import RuntimeDescriptor, ScriptInterpreter
from .local_runtime import LocalScriptInterpreter
from .monty_runtime import MontyScriptInterpreter, monty_available

logger = get_logger(__name__)

SUPPORTED_RUNTIMES = {"local", "monty"}


@dataclass(slots=True)
class RuntimeHealth:
    """Availability information for a runtime backend."""

    runtime: str
    available: bool
    detail: str


def descriptor_from_config(runtime_config: Any = None) -> RuntimeDescriptor:
    """Build a ``RuntimeDescriptor`` from a ``RuntimeConfig``-like object."""
    name = str(getattr(runtime_config, "name", "local") or "local")
    options: dict[str, Any] = {
        "isolate_runs": bool(getattr(runtime_config, "isolate_runs", True)),
    }
    if name.strip().lower() == "monty":
        options = {
            "max_memory": getattr(runtime_config, "monty_max_memory", None),
            "max_allocations": getattr(runtime_config, "monty_max_allocations", None),
            "type_check": bool(getattr(runtime_config, "monty_type_check", False)),
        }
    return RuntimeDescriptor(name=name, options=options)


def load_runtime(descriptor: RuntimeDescriptor | str | None = None) -> ScriptInterpreter:
    """
    Create an interpreter from a runtime descriptor.

    Raises:
        ConfigurationError: Unknown runtime name.
        ImportError: The runtime's optional dependency is missing.
    """
    if descriptor is None:
        descriptor = RuntimeDescriptor()
    elif isinstance(descriptor, str):
        descriptor = RuntimeDescriptor(name=descriptor)

    normalized = (descriptor.name or "local").strip().lower()
    if normalized not in SUPPORTED_RUNTIMES:
        raise ConfigurationError(
            f"Unsupported interpreter runtime '{descriptor.name}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_RUNTIMES))}"
        )

    options = dict(descriptor.options)
    logger.debug("Loading %s runtime with options %s", normalized, options)

    if normalized == "local":
        return LocalScriptInterpreter(
            isolate_runs=bool(options.get("isolate_runs", True)),
            extra_builtins=options.get("extra_builtins"),
        )

    return MontyScriptInterpreter(
        max_duration_secs=options.get("max_duration_secs"),
        max_memory=options.get("max_memory"),
        max_allocations=options.get("max_allocations"),
        type_check=bool(options.get("type_check", False)),
    )


def detect_runtime_health() -> dict[str, RuntimeHealth]:
    """Probe runtime availability for diagnostics."""
    results = [RuntimeHealth(runtime="local", available=True, detail="always available")]

    if monty_available():
        results.append(RuntimeHealth(runtime="monty", available=True, detail="pydantic-monty available"))
    else:
        results.append(
            RuntimeHealth(
                runtime="monty",
                available=False,
                detail="pydantic-monty not installed (pip install pydantic-monty)",
            )
        )

    return {item.runtime: item for item in results}
