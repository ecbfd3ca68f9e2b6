"""
Base types for sandbox interpreter runtimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

InputHook = Callable[[str], str]


@dataclass(slots=True)
class RuntimeDescriptor:
    """Names a runtime and the options used to load it."""

    name: str = "local"
    options: dict[str, Any] = field(default_factory=dict)


class ScriptError(Exception):
    """
    Normalized script-level error raised by ``ScriptInterpreter.run_source``.

    Attributes:
        message:   ``"<ExcType>: <text>"`` summary shown to the learner.
        traceback: Full traceback text restricted to the script's own frames.
        exc_type:  Name of the original exception class.
    """

    def __init__(self, message: str, traceback: str = "", exc_type: str = "Exception"):
        super().__init__(message)
        self.message = message
        self.traceback = traceback or message
        self.exc_type = exc_type


@runtime_checkable
class ScriptInterpreter(Protocol):
    """
    Runtime contract for the embedded interpreter.

    ``run_source`` is synchronous and runs on the calling thread.  Output is
    written to ``sys.stdout`` / ``sys.stderr``.  Every ``input()`` the script
    makes calls the installed hook, which may block the calling thread until
    a value is available.  Script errors surface as ``ScriptError``;
    ``BaseException`` signals raised by the hook propagate unchanged.
    """

    name: str

    def install_input_hook(self, hook: InputHook | None) -> None:
        """Route the script's input() calls to *hook*."""
        ...

    def run_source(self, code: str, *, filename: str = "<script>") -> None:
        """Execute *code* to completion."""
        ...

    def seed(self, value: int) -> None:
        """Seed the interpreter's random number generator."""
        ...

    def reset(self) -> None:
        """Drop all script state left by previous runs."""
        ...

    def close(self) -> None:
        """Release the interpreter."""
        ...
