"""
In-process interpreter runtime.

Runs learner code via ``exec()`` in a private namespace whose ``input``
builtin is routed to the host's input hook.  The namespace is rebuilt on
``reset()`` (and before every run when ``isolate_runs`` is set), so nothing a
script defines leaks into the next one.
"""

from __future__ import annotations

import builtins
import linecache
import random
import traceback
from typing import Any

from ...core.exceptions import ExecutionInterrupted, InputAborted
from .base import InputHook, ScriptError


class LocalScriptInterpreter:
    """Executes code via ``exec()`` on the calling thread."""

    name = "local"

    def __init__(
        self,
        *,
        isolate_runs: bool = True,
        extra_builtins: dict[str, Any] | None = None,
    ) -> None:
        self._isolate_runs = isolate_runs
        self._extra_builtins = dict(extra_builtins or {})
        self._hook: InputHook | None = None
        self._namespace: dict[str, Any] = {}
        self._closed = False
        self.reset()

    # ── Lifecycle ─────────────────────────────────────────────────────

    def install_input_hook(self, hook: InputHook | None) -> None:
        if hook is not None and not callable(hook):
            raise TypeError("input hook must be callable")
        self._hook = hook

    def seed(self, value: int) -> None:
        random.seed(value)

    def reset(self) -> None:
        script_builtins = dict(vars(builtins))
        script_builtins.update(self._extra_builtins)
        script_builtins["input"] = self._input
        self._namespace = {
            "__name__": "__main__",
            "__builtins__": script_builtins,
        }

    def close(self) -> None:
        self._namespace.clear()
        self._hook = None
        self._closed = True

    # ── Execution ─────────────────────────────────────────────────────

    def run_source(self, code: str, *, filename: str = "<script>") -> None:
        if self._closed:
            raise RuntimeError("Interpreter is closed.")
        if self._isolate_runs:
            self.reset()

        # Register the source so tracebacks can show the offending lines.
        linecache.cache[filename] = (len(code), None, code.splitlines(True), filename)
        try:
            try:
                compiled = compile(code, filename, "exec")
            except SyntaxError as e:
                detail = "".join(traceback.format_exception_only(type(e), e))
                raise ScriptError(
                    f"SyntaxError: {e.msg} (line {e.lineno})", detail, "SyntaxError"
                ) from None

            try:
                exec(compiled, self._namespace)
            except SystemExit as e:
                if e.code in (None, 0):
                    return
                raise ScriptError(
                    f"SystemExit: {e.code}",
                    _format_script_traceback(e, filename),
                    "SystemExit",
                ) from None
            except (InputAborted, ExecutionInterrupted):
                raise
            except BaseException as e:
                raise ScriptError(
                    _summarize(e), _format_script_traceback(e, filename), type(e).__name__
                ) from None
        finally:
            linecache.cache.pop(filename, None)

    @property
    def namespace(self) -> dict[str, Any]:
        """Direct access to the script namespace (for testing/debug)."""
        return self._namespace

    # ── Internal helpers ──────────────────────────────────────────────

    def _input(self, prompt: object = "") -> str:
        hook = self._hook
        if hook is None:
            raise EOFError("EOF when reading a line")
        return hook(str(prompt))


def _summarize(exc: BaseException) -> str:
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


def _format_script_traceback(exc: BaseException, filename: str) -> str:
    """Format *exc* starting at the first frame that belongs to the script."""
    tb = exc.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename != filename:
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(exc), exc, tb))
