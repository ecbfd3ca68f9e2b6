"""
Custom exceptions for Script Bridge.

Provides specific exception types for better error handling and user feedback.
"""

from __future__ import annotations

from typing import Any


class ScriptBridgeError(Exception):
    """Base exception for Script Bridge errors."""


class ConfigurationError(ScriptBridgeError):
    """Error in configuration."""


# Bridge failures
#
# Every failure a session can end with maps onto one of these. Sessions never
# raise them to callers; they are converted into a failed ``ExecutionResult``.


class BridgeFailure(ScriptBridgeError):
    """Base class for failures reported through an execution result."""

    kind = "bridge"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.user_message = message
        self.recovery_hint = ""


class InitFailure(BridgeFailure):
    """The sandbox runtime could not be loaded or configured."""

    kind = "init"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"Failed to initialize interpreter: {message}", details)
        self.user_message = "The Python interpreter could not be started."
        self.recovery_hint = "Check your connection and press Run again to retry."


class ExecutionFailure(BridgeFailure):
    """The script raised an uncaught error."""

    kind = "execution"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.user_message = message
        self.recovery_hint = "Fix the error in your code and run it again."


class InputProtocolFailure(BridgeFailure):
    """The asynchronous input round-trip failed."""

    kind = "input_protocol"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(f"Input request failed: {message}", details)
        self.user_message = "The program stopped because input could not be collected."
        self.recovery_hint = "Run the program again and answer each prompt."


class SessionTimeout(BridgeFailure):
    """The session exceeded its wall-clock limit."""

    kind = "timeout"

    def __init__(self, timeout: float):
        super().__init__(f"Execution exceeded {timeout:g}s timeout", {"timeout": timeout})
        self.timeout = timeout
        self.user_message = f"Your program ran for longer than {timeout:g} seconds."
        self.recovery_hint = "Look for an infinite loop or an input() waiting for an answer."


class SessionCancelled(BridgeFailure):
    """The session was aborted by its caller."""

    kind = "cancelled"

    def __init__(self, reason: str = "cancelled by user"):
        super().__init__(f"Execution cancelled: {reason}", {"reason": reason})
        self.reason = reason
        self.user_message = "The program was stopped."


# Host / session misuse


class SessionStateError(ScriptBridgeError):
    """An illegal session state transition was attempted."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal session transition: {current} -> {target}")
        self.current = current
        self.target = target


class SandboxBusyError(ScriptBridgeError):
    """A run was started while another one is still driving the interpreter."""


# In-interpreter signals
#
# Raised inside the running script. They derive from BaseException so that a
# learner's ``except Exception:`` cannot swallow them.


class InputAborted(BaseException):
    """Raised at the input() call site when the input round-trip failed."""


class ExecutionInterrupted(BaseException):
    """Raised inside the script thread when the run is cancelled or times out."""
