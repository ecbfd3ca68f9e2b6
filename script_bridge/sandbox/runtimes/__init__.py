"""
Interpreter runtime backends.
"""

from .base import InputHook, RuntimeDescriptor, ScriptError, ScriptInterpreter
from .local_runtime import LocalScriptInterpreter
from .monty_runtime import MontyScriptInterpreter, monty_available
from .registry import (
    SUPPORTED_RUNTIMES,
    RuntimeHealth,
    descriptor_from_config,
    detect_runtime_health,
    load_runtime,
)

__all__ = [
    "InputHook",
    "LocalScriptInterpreter",
    "MontyScriptInterpreter",
    "RuntimeDescriptor",
    "RuntimeHealth",
    "SUPPORTED_RUNTIMES",
    "ScriptError",
    "ScriptInterpreter",
    "descriptor_from_config",
    "detect_runtime_health",
    "load_runtime",
    "monty_available",
]
