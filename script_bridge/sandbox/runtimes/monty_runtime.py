"""
Monty-backed interpreter runtime.

Uses ``pydantic_monty`` (a minimal Python interpreter written in Rust by
Pydantic) to execute learner code with no filesystem, network or import
access.  ``input`` is declared as an external function: when the script
calls it Monty pauses and hands back a ``MontySnapshot``, the runtime asks
the installed hook for the value and resumes the snapshot with it::

    monty.start(print_callback=...)
          |
    +-----+------------------+
    |                        |
 MontyComplete          MontySnapshot (input("prompt"))
    |                        |
    |                  value = hook("prompt")
    |                  snapshot.resume(return_value=value)
    |                        |
    +-----------<------------+   (loop until complete)

The host sees the same blocking hook contract as the local runtime.
"""

from __future__ import annotations

import importlib.util
import sys
from typing import Any, Literal

from .base import InputHook, ScriptError

_INPUT_FUNCTION = "input"


def monty_available() -> bool:
    return importlib.util.find_spec("pydantic_monty") is not None


class MontyScriptInterpreter:
    """Runs scripts inside the Monty sandbox."""

    name = "monty"

    def __init__(
        self,
        *,
        max_duration_secs: float | None = None,
        max_memory: int | None = None,
        max_allocations: int | None = None,
        type_check: bool = False,
    ) -> None:
        if not monty_available():
            raise ImportError(
                "pydantic-monty is required for the monty runtime. "
                "Install it with: pip install pydantic-monty"
            )
        self._limits: dict[str, Any] = {}
        if max_duration_secs:
            self._limits["max_duration_secs"] = float(max_duration_secs)
        if max_memory is not None:
            self._limits["max_memory"] = int(max_memory)
        if max_allocations is not None:
            self._limits["max_allocations"] = int(max_allocations)
        self._type_check = type_check
        self._hook: InputHook | None = None
        self.external_calls = 0

    def install_input_hook(self, hook: InputHook | None) -> None:
        if hook is not None and not callable(hook):
            raise TypeError("input hook must be callable")
        self._hook = hook

    def seed(self, value: int) -> None:
        # Monty exposes no random module; nothing to seed.
        return None

    def reset(self) -> None:
        self.external_calls = 0

    def close(self) -> None:
        self._hook = None

    def run_source(self, code: str, *, filename: str = "<script>") -> None:
        import pydantic_monty

        def _print_callback(stream: Literal["stdout", "stderr"], text: str) -> None:
            target = sys.stderr if stream == "stderr" else sys.stdout
            target.write(text)

        try:
            monty = pydantic_monty.Monty(
                code,
                inputs=[],
                external_functions=[_INPUT_FUNCTION],
                type_check=self._type_check,
            )
        except pydantic_monty.MontySyntaxError as e:
            message = f"SyntaxError: {e.display('msg')}"
            raise ScriptError(message, message, "SyntaxError") from None
        except pydantic_monty.MontyTypingError as e:
            message = f"TypeError: {e.display('concise')}"
            raise ScriptError(message, message, "TypeError") from None

        limits = pydantic_monty.ResourceLimits(**self._limits) if self._limits else None

        try:
            progress = monty.start(limits=limits, print_callback=_print_callback)
            while True:
                if isinstance(progress, pydantic_monty.MontyComplete):
                    break

                if isinstance(progress, pydantic_monty.MontySnapshot):
                    self.external_calls += 1
                    if progress.function_name != _INPUT_FUNCTION:
                        progress = progress.resume(
                            exception=NameError(f"name '{progress.function_name}' is not defined")
                        )
                        continue
                    progress = self._answer_input(progress)
                    continue

                # MontyFutureSnapshot: no async external functions are exposed.
                if hasattr(progress, "pending_call_ids"):
                    progress = progress.resume({})
                    continue

                break
        except pydantic_monty.MontyRuntimeError as e:
            detail = e.display("traceback")
            raise ScriptError(_last_line(detail), detail, "RuntimeError") from None
        except pydantic_monty.MontySyntaxError as e:
            message = f"SyntaxError: {e.display('msg')}"
            raise ScriptError(message, message, "SyntaxError") from None

    def _answer_input(self, snapshot: Any) -> Any:
        prompt = snapshot.args[0] if snapshot.args else ""
        if self._hook is None:
            return snapshot.resume(exception=EOFError("EOF when reading a line"))
        try:
            value = self._hook(str(prompt))
        except EOFError as e:
            return snapshot.resume(exception=e)
        return snapshot.resume(return_value=value)


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else "RuntimeError"
