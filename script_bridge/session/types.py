"""
Value types shared by sessions, the input broker and the session manager.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from ..sandbox.capture import OutputChunk

InputHandler = Callable[[str], Awaitable[str]]
OutputSink = Callable[[OutputChunk], None]


class SessionState(str, Enum):
    """Lifecycle of one execution session."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


class FailureKind(str, Enum):
    """Why a session ended in ``FAILED``."""

    INIT = "init"
    EXECUTION = "execution"
    INPUT_PROTOCOL = "input_protocol"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class InputRecord:
    """One consumed input: the prompt shown and the value supplied."""

    prompt: str
    value: str


@dataclass(slots=True)
class InputRequest:
    """
    An in-flight ``input()`` call waiting for the UI.

    Settled exactly once, through ``resolve`` or ``reject``.
    """

    prompt: str
    sequence: int
    future: asyncio.Future[str] = field(repr=False)

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, value: str) -> bool:
        if self.future.done():
            return False
        self.future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """
    Terminal result of a session.

    Either a success (``success=True``, no ``kind``, no ``error``) or a
    failure (``success=False`` with both ``kind`` and ``error``).  Anything
    else is rejected at construction.

    Attributes:
        output:     Text the script wrote to stdout, prompts included.
        stderr:     Text the script wrote to stderr, tracebacks included.
        transcript: Terminal view: output interleaved with echoed input.
        inputs:     Every input consumed, in order.
    """

    session_id: str
    success: bool
    output: str = ""
    error: str | None = None
    kind: FailureKind | None = None
    stderr: str = ""
    transcript: str = ""
    inputs: tuple[InputRecord, ...] = ()
    duration_ms: float = 0.0
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.success and (self.kind is not None or self.error is not None):
            raise ValueError("A successful result cannot carry a failure kind or error")
        if not self.success and (self.kind is None or not self.error):
            raise ValueError("A failed result needs both a failure kind and an error message")

    @classmethod
    def completed(cls, session_id: str, **kwargs: Any) -> "ExecutionResult":
        return cls(session_id=session_id, success=True, **kwargs)

    @classmethod
    def failed(
        cls, session_id: str, kind: FailureKind, error: str, **kwargs: Any
    ) -> "ExecutionResult":
        return cls(session_id=session_id, success=False, kind=kind, error=error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape for the UI: ``{success, output, error?}`` plus extras."""
        result: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.kind is not None:
            result["kind"] = self.kind.value
        return result
