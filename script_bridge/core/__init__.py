"""
Core functionality for Script Bridge.
"""

from .config import BridgeConfig, LoggingConfig, RuntimeConfig, SessionConfig
from .exceptions import (
    BridgeFailure,
    ConfigurationError,
    ExecutionFailure,
    ExecutionInterrupted,
    InitFailure,
    InputAborted,
    InputProtocolFailure,
    SandboxBusyError,
    ScriptBridgeError,
    SessionCancelled,
    SessionStateError,
    SessionTimeout,
)
from .logging import get_logger, setup_logging

__all__ = [
    "BridgeConfig",
    "BridgeFailure",
    "ConfigurationError",
    "ExecutionFailure",
    "ExecutionInterrupted",
    "InitFailure",
    "InputAborted",
    "InputProtocolFailure",
    "LoggingConfig",
    "RuntimeConfig",
    "SandboxBusyError",
    "ScriptBridgeError",
    "SessionCancelled",
    "SessionConfig",
    "SessionStateError",
    "SessionTimeout",
    "get_logger",
    "setup_logging",
]
