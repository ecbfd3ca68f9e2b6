"""
Execution sessions: state machine, input broker and the serializing manager.
"""

from .broker import InputBroker
from .handlers import (
    CallbackInputHandler,
    ConsoleInputHandler,
    InputHandlerBase,
    ScriptedInputHandler,
)
from .manager import (
    SessionHandle,
    SessionManager,
    configure_default_manager,
    execute,
    execute_interactive,
    get_default_manager,
    initialize,
    is_ready,
)
from .session import ExecutionSession
from .types import (
    ExecutionResult,
    FailureKind,
    InputHandler,
    InputRecord,
    InputRequest,
    OutputSink,
    SessionState,
)

__all__ = [
    "CallbackInputHandler",
    "ConsoleInputHandler",
    "ExecutionResult",
    "ExecutionSession",
    "FailureKind",
    "InputBroker",
    "InputHandler",
    "InputHandlerBase",
    "InputRecord",
    "InputRequest",
    "OutputSink",
    "ScriptedInputHandler",
    "SessionHandle",
    "SessionManager",
    "SessionState",
    "configure_default_manager",
    "execute",
    "execute_interactive",
    "get_default_manager",
    "initialize",
    "is_ready",
]
