"""
Sandbox host adapter.

Owns the single embedded interpreter and exposes a narrow "run code, capture
output" primitive to sessions.

Suspend/resume
~~~~~~~~~~~~~~
The interpreter cannot be paused mid-statement, so every run gets its own
worker thread.  When the script calls ``input()`` the installed hook runs on
that worker thread, submits the caller's async ``on_input_requested(prompt)``
coroutine to the caller's event loop with ``run_coroutine_threadsafe`` and
parks on the returned future.  The loop stays free to talk to the UI; once
the coroutine resolves, the worker wakes up and ``input()`` returns with the
script's frames untouched::

    event loop thread                    worker thread
    -----------------                    -------------
    run_source() --- start ------------> interpreter.run_source(code)
         |                                    |
         |                               input("name: ")
         |  <--- run_coroutine_threadsafe --  hook parks on future
    await on_input_requested("name: ")        .
         |  --- future.set_result("Ada") -->  input() returns "Ada"
         |                                    |
    await run.done  <--------- finish ------ script returns

Aborting a run either cancels the parked future (the hook then raises
``ExecutionInterrupted`` at the ``input()`` call site) or injects
``ExecutionInterrupted`` into a busy worker thread.  A worker that does not
unwind within the grace period is abandoned and the interpreter reset.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import ctypes
import itertools
import sys
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from ..core.exceptions import (
    ExecutionInterrupted,
    InitFailure,
    InputAborted,
    SandboxBusyError,
)
from ..core.logging import get_logger
from .capture import CapturedOutput, ChunkCallback, OutputCapture, capture_output
from .runtimes import RuntimeDescriptor, ScriptError, ScriptInterpreter, load_runtime

logger = get_logger(__name__)

InputRequester = Callable[[str], Awaitable[str]]
RuntimeLoader = Callable[[RuntimeDescriptor], ScriptInterpreter]

try:
    _PY_SET_ASYNC_EXC = ctypes.pythonapi.PyThreadState_SetAsyncExc
except AttributeError:
    _PY_SET_ASYNC_EXC = None
else:
    _PY_SET_ASYNC_EXC.argtypes = [ctypes.c_ulong, ctypes.py_object]
    _PY_SET_ASYNC_EXC.restype = ctypes.c_int


class HostState(str, Enum):
    """Lifecycle of the embedded interpreter."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    TORN_DOWN = "torn_down"


@dataclass(slots=True)
class RawOutcome:
    """What happened during one ``run_source`` call."""

    captured: CapturedOutput = field(default_factory=CapturedOutput)
    error: str | None = None
    traceback: str | None = None
    exc_type: str | None = None
    interrupted: bool = False
    input_aborted: bool = False
    abandoned: bool = False
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and not (self.interrupted or self.input_aborted)


class _ActiveRun:
    """Book-keeping shared between the loop thread and one worker thread."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_input: InputRequester,
        on_chunk: ChunkCallback | None,
    ) -> None:
        self.loop = loop
        self.on_input = on_input
        self.on_chunk = on_chunk
        self.done: concurrent.futures.Future[RawOutcome] = concurrent.futures.Future()
        self.lock = threading.Lock()
        self.thread_id: int | None = None
        self.capture: OutputCapture | None = None
        self.parked: concurrent.futures.Future[str] | None = None
        self.executing = False
        self.unwinding = False
        self.interrupt_requested = False
        # Set once ExecutionInterrupted has reached the script, even if the
        # script catches it and carries on.
        self.interrupt_delivered = False
        self.input_abort_error: str | None = None

    def request_input(self, prompt: str) -> str:
        """Called on the worker thread; blocks until the loop supplies a value."""
        if self.capture is not None and prompt:
            self.capture.write_prompt(prompt)

        with self.lock:
            if self.interrupt_requested:
                self.interrupt_delivered = True
                raise ExecutionInterrupted("run aborted")
            future = asyncio.run_coroutine_threadsafe(self.on_input(prompt), self.loop)
            self.parked = future

        try:
            value = future.result()
        except EOFError:
            raise
        except (concurrent.futures.CancelledError, asyncio.CancelledError):
            raise self._interrupted() from None
        except Exception as e:
            if self.interrupt_requested:
                raise self._interrupted() from None
            raise self._input_aborted(str(e) or type(e).__name__) from None
        finally:
            with self.lock:
                self.parked = None

        if self.interrupt_requested:
            raise self._interrupted()
        return value

    def _input_aborted(self, message: str) -> InputAborted:
        # The script is already being torn down from the input() call site.
        with self.lock:
            self.unwinding = True
            self.input_abort_error = message
        return InputAborted(message)

    def _interrupted(self) -> ExecutionInterrupted:
        with self.lock:
            self.unwinding = True
            self.interrupt_delivered = True
        return ExecutionInterrupted("run aborted")

    def snapshot(self) -> CapturedOutput:
        return self.capture.result() if self.capture is not None else CapturedOutput()

    def finish(self, outcome: RawOutcome) -> None:
        if not self.done.done():
            self.done.set_result(outcome)


class SandboxHost:
    """
    Process-wide owner of the embedded interpreter.

    ``initialize()`` is idempotent and coalesces concurrent callers onto one
    in-flight load.  ``run_source()`` must not be overlapped; the session
    manager serializes callers.
    """

    def __init__(
        self,
        descriptor: RuntimeDescriptor | None = None,
        *,
        loader: RuntimeLoader = load_runtime,
        max_output_chars: int | None = 50_000,
    ) -> None:
        self._descriptor = descriptor or RuntimeDescriptor()
        self._loader = loader
        self._max_output_chars = max_output_chars
        self._interpreter: ScriptInterpreter | None = None
        self._state = HostState.UNINITIALIZED
        self._init_task: asyncio.Future[None] | None = None
        self._active: _ActiveRun | None = None
        self._run_ids = itertools.count(1)
        self.load_count = 0
        self.abandoned_runs = 0

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self._state is HostState.READY and self._interpreter is not None

    @property
    def state(self) -> HostState:
        return self._state

    @property
    def runtime_name(self) -> str:
        return self._descriptor.name

    @property
    def busy(self) -> bool:
        return self._active is not None

    async def initialize(self) -> None:
        """
        Load the interpreter and install the input hook.

        Raises:
            InitFailure: The runtime could not be loaded or configured.  The
                next call starts a fresh attempt.
        """
        if self.ready:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load())
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _load(self) -> None:
        self.load_count += 1
        name = self._descriptor.name
        logger.info("Loading %s interpreter runtime", name)
        try:
            interpreter = await asyncio.to_thread(self._loader, self._descriptor)
        except InitFailure:
            raise
        except Exception as e:
            logger.warning("Interpreter runtime %s failed to load: %s", name, e)
            raise InitFailure(str(e), {"runtime": name, "error_type": type(e).__name__}) from e

        try:
            interpreter.install_input_hook(self._input_hook)
        except Exception as e:
            interpreter.close()
            raise InitFailure(
                f"could not install input hook: {e}",
                {"runtime": name, "error_type": type(e).__name__},
            ) from e

        self._interpreter = interpreter
        self._state = HostState.READY
        logger.info("Interpreter runtime %s ready", name)

    def reset(self) -> None:
        """Restore the interpreter to a clean state without reloading it."""
        if self._interpreter is not None:
            self._interpreter.reset()

    async def teardown(self) -> None:
        """Abort any run and close the interpreter."""
        if self._active is not None:
            await self.abort(grace=0.5)
        if self._interpreter is not None:
            self._interpreter.install_input_hook(None)
            self._interpreter.close()
        self._interpreter = None
        self._state = HostState.TORN_DOWN
        logger.info("Interpreter runtime %s torn down", self._descriptor.name)

    # ── Execution ─────────────────────────────────────────────────────

    async def run_source(
        self,
        code: str,
        on_input_requested: InputRequester,
        *,
        on_output: ChunkCallback | None = None,
        seed: int | None = None,
        filename: str | None = None,
    ) -> RawOutcome:
        """
        Execute *code* on a worker thread and wait for it to finish.

        Script errors, input failures and interruptions are reported in the
        returned ``RawOutcome``; nothing the script does raises here.

        Raises:
            InitFailure: The interpreter could not be initialized.
            SandboxBusyError: Another run is still in progress.
        """
        await self.initialize()
        if self._active is not None:
            raise SandboxBusyError("Another script is already running in the sandbox")

        interpreter = self._interpreter
        assert interpreter is not None
        run_id = next(self._run_ids)
        run = _ActiveRun(asyncio.get_running_loop(), on_input_requested, on_output)
        self._active = run

        thread = threading.Thread(
            target=self._worker,
            args=(run, interpreter, code, filename or f"<script-{run_id}>", seed),
            name=f"script-bridge-run-{run_id}",
            daemon=True,
        )
        try:
            thread.start()
            outcome = await asyncio.wrap_future(run.done)
        except asyncio.CancelledError:
            self._interrupt(run)
            raise
        finally:
            if self._active is run:
                self._active = None

        if not outcome.ok:
            self.reset()
        return outcome

    async def abort(self, grace: float = 2.0) -> bool:
        """
        Interrupt the run in progress.

        Returns:
            True if a run was interrupted, False if nothing was running.
        """
        run = self._active
        if run is None:
            return False

        self._interrupt(run)
        try:
            await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(run.done)), grace)
        except asyncio.TimeoutError:
            self.abandoned_runs += 1
            logger.warning(
                "Script thread did not stop within %.1fs; abandoning it", grace
            )
            run.finish(RawOutcome(captured=run.snapshot(), interrupted=True, abandoned=True))
            self.reset()
        return True

    # ── Internal helpers ──────────────────────────────────────────────

    def _input_hook(self, prompt: str) -> str:
        run = self._active
        if run is None or run.thread_id != threading.get_ident():
            raise EOFError("EOF when reading a line")
        return run.request_input(prompt)

    def _interrupt(self, run: _ActiveRun) -> None:
        with run.lock:
            run.interrupt_requested = True
            parked = run.parked
            if (
                parked is None
                and run.executing
                and not run.unwinding
                and run.thread_id is not None
            ):
                if _raise_in_thread(run.thread_id, ExecutionInterrupted):
                    run.interrupt_delivered = True
        if parked is not None:
            parked.cancel()

    def _worker(
        self,
        run: _ActiveRun,
        interpreter: ScriptInterpreter,
        code: str,
        filename: str,
        seed: int | None,
    ) -> None:
        run.thread_id = threading.get_ident()
        outcome = RawOutcome()
        started = time.perf_counter()
        try:
            with capture_output(run.on_chunk, max_output_chars=self._max_output_chars) as capture:
                run.capture = capture
                try:
                    self._execute(run, interpreter, code, filename, seed, outcome)
                finally:
                    outcome.captured = capture.result()
        except ExecutionInterrupted:
            outcome.interrupted = True
        except BaseException as e:
            # The worker must always resolve the run, whatever went wrong.
            logger.exception("Sandbox worker failed")
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.exc_type = type(e).__name__
        finally:
            outcome.duration_ms = (time.perf_counter() - started) * 1000
            run.finish(outcome)

    def _execute(
        self,
        run: _ActiveRun,
        interpreter: ScriptInterpreter,
        code: str,
        filename: str,
        seed: int | None,
        outcome: RawOutcome,
    ) -> None:
        with run.lock:
            if run.interrupt_requested:
                outcome.interrupted = True
                return
            run.executing = True
        try:
            if seed is not None:
                interpreter.seed(seed)
            interpreter.run_source(code, filename=filename)
        except ScriptError as e:
            outcome.error = e.message
            outcome.traceback = e.traceback
            outcome.exc_type = e.exc_type
            text = e.traceback if e.traceback.endswith("\n") else e.traceback + "\n"
            sys.stderr.write(text)
        except InputAborted as e:
            outcome.input_aborted = True
            outcome.error = str(e) or "input aborted"
        except ExecutionInterrupted:
            outcome.interrupted = True
        finally:
            with run.lock:
                run.executing = False
                if run.interrupt_delivered:
                    outcome.interrupted = True
                elif run.input_abort_error is not None and not outcome.input_aborted:
                    outcome.input_aborted = True
                    outcome.error = outcome.error or run.input_abort_error


def _raise_in_thread(thread_id: int, exc_type: type[BaseException]) -> bool:
    """Schedule *exc_type* to be raised in the thread with *thread_id*."""
    if _PY_SET_ASYNC_EXC is None:
        return False
    result = _PY_SET_ASYNC_EXC(ctypes.c_ulong(thread_id), ctypes.py_object(exc_type))
    if result > 1:
        _PY_SET_ASYNC_EXC(ctypes.c_ulong(thread_id), None)
        raise RuntimeError("PyThreadState_SetAsyncExc affected multiple threads")
    return result == 1
