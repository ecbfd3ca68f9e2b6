"""
Script Bridge: run interactive Python scripts inside an embedded sandbox.

Scripts can block on ``input()`` while the host asks a UI for the answer
asynchronously; output, errors and every consumed input come back as one
``ExecutionResult``.

    from script_bridge import execute_interactive

    async def ask(prompt: str) -> str:
        return await ui.prompt(prompt)

    result = await execute_interactive("name = input('Name: ')\\nprint('Hi', name)", ask)
"""

__version__ = "0.1.0"

from .core.config import BridgeConfig, LoggingConfig, RuntimeConfig, SessionConfig
from .core.exceptions import (
    BridgeFailure,
    ConfigurationError,
    ExecutionFailure,
    InitFailure,
    InputProtocolFailure,
    ScriptBridgeError,
    SessionCancelled,
    SessionStateError,
    SessionTimeout,
)
from .events import BridgeEvent, BridgeEventBus, BridgeEventType
from .sandbox.capture import OutputChunk
from .sandbox.host import SandboxHost
from .session import (
    ExecutionResult,
    ExecutionSession,
    FailureKind,
    SessionHandle,
    SessionManager,
    SessionState,
    configure_default_manager,
    execute,
    execute_interactive,
    get_default_manager,
    initialize,
    is_ready,
)

__all__ = [
    "BridgeConfig",
    "BridgeEvent",
    "BridgeEventBus",
    "BridgeEventType",
    "BridgeFailure",
    "ConfigurationError",
    "ExecutionFailure",
    "ExecutionResult",
    "ExecutionSession",
    "FailureKind",
    "InitFailure",
    "InputProtocolFailure",
    "LoggingConfig",
    "OutputChunk",
    "RuntimeConfig",
    "SandboxHost",
    "ScriptBridgeError",
    "SessionCancelled",
    "SessionConfig",
    "SessionHandle",
    "SessionManager",
    "SessionState",
    "SessionStateError",
    "SessionTimeout",
    "configure_default_manager",
    "execute",
    "execute_interactive",
    "get_default_manager",
    "initialize",
    "is_ready",
    "__version__",
]
