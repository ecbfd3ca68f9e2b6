"""
Execution session.

One ``ExecutionSession`` is one run of one script: it drives the host, owns
the input broker, accumulates output and turns whatever happened into a
single ``ExecutionResult``.

State machine::

    IDLE ──> INITIALIZING ──> RUNNING <──> AWAITING_INPUT
      │           │              │               │
      └───────────┴──> FAILED <──┴───────────────┘
                                 │
                                 └──> COMPLETED

Sessions are driven from one event loop; ``cancel()`` must be called on that
loop's thread.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from typing import Any

from ..core.config import SessionConfig
from ..core.exceptions import (
    BridgeFailure,
    InitFailure,
    SessionCancelled,
    SessionStateError,
    SessionTimeout,
)
from ..core.logging import get_logger
from ..events import BridgeEventBus, BridgeEventType
from ..sandbox.capture import INPUT, PROMPT, STDERR, STDOUT, OutputChunk
from ..sandbox.host import RawOutcome, SandboxHost
from .broker import InputBroker
from .types import (
    ExecutionResult,
    FailureKind,
    InputHandler,
    InputRecord,
    InputRequest,
    OutputSink,
    SessionState,
)

logger = get_logger(__name__)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset(
        {SessionState.INITIALIZING, SessionState.RUNNING, SessionState.FAILED}
    ),
    SessionState.INITIALIZING: frozenset({SessionState.RUNNING, SessionState.FAILED}),
    SessionState.RUNNING: frozenset(
        {SessionState.AWAITING_INPUT, SessionState.COMPLETED, SessionState.FAILED}
    ),
    SessionState.AWAITING_INPUT: frozenset({SessionState.RUNNING, SessionState.FAILED}),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
}

CONFIG_TIMEOUT = object()


class ExecutionSession:
    """State machine for a single script run."""

    def __init__(
        self,
        source_code: str,
        host: SandboxHost,
        input_handler: InputHandler,
        *,
        config: SessionConfig | None = None,
        on_output: OutputSink | None = None,
        seed: int | None = None,
        timeout: Any = CONFIG_TIMEOUT,
        session_id: str | None = None,
        events: BridgeEventBus | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.id = session_id or uuid.uuid4().hex
        self._source_code = source_code
        self._host = host
        self._on_output = on_output
        self._seed = seed
        self._timeout: float | None = (
            self.config.timeout_seconds if timeout is CONFIG_TIMEOUT else timeout
        )
        self._events = events

        self._state = SessionState.IDLE
        self._chunks: list[OutputChunk] = []
        self._chunk_lock = threading.Lock()
        self._pending_prompt: str | None = None
        self._abort_reason: BridgeFailure | None = None
        self._abort_task: asyncio.Task[bool] | None = None
        self._result: ExecutionResult | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started_at: float | None = None

        self._broker = InputBroker(
            input_handler,
            on_requested=self._on_input_requested,
            on_resolved=self._on_input_resolved,
            on_settled=self._on_input_settled,
            input_timeout=self.config.input_timeout_seconds,
        )

    # ── Read-only view ────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def source_code(self) -> str:
        return self._source_code

    @property
    def output_buffer(self) -> tuple[OutputChunk, ...]:
        with self._chunk_lock:
            return tuple(self._chunks)

    @property
    def pending_prompt(self) -> str | None:
        return self._pending_prompt

    @property
    def input_history(self) -> tuple[InputRecord, ...]:
        return self._broker.history

    @property
    def result(self) -> ExecutionResult | None:
        return self._result

    @property
    def done(self) -> bool:
        return self._state.terminal

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def run(self) -> ExecutionResult:
        """
        Run the script to a terminal state.

        Never raises for anything the script, the handler or the host does;
        every outcome is returned as an ``ExecutionResult``.  A session runs
        at most once; calling ``run()`` on a finished session returns its
        result again.
        """
        if self._result is not None:
            return self._result
        if self._state is not SessionState.IDLE:
            raise SessionStateError(self._state.value, SessionState.RUNNING.value)

        self._loop = asyncio.get_running_loop()
        self._started_at = time.perf_counter()
        self._emit(BridgeEventType.SESSION_STARTED, seed=self._seed)
        try:
            return await self._run()
        except asyncio.CancelledError:
            if self._result is None:
                self._finish_failure(SessionCancelled("the session task was cancelled"))
            raise
        except Exception as e:
            logger.exception("Session %s failed inside the bridge", self.id)
            if self._result is not None:
                return self._result
            return self._finish(
                FailureKind.INPUT_PROTOCOL, f"Internal bridge error: {type(e).__name__}: {e}"
            )

    async def _run(self) -> ExecutionResult:
        if not self._host.ready:
            self._transition(SessionState.INITIALIZING)
            try:
                await self._host.initialize()
            except InitFailure as e:
                self._emit(BridgeEventType.HOST_INIT_FAILED, error=str(e))
                return self._finish_failure(e)
            self._emit(BridgeEventType.HOST_READY, runtime=self._host.runtime_name)

        if self._abort_reason is not None:
            return self._finish_failure(self._abort_reason)

        self._transition(SessionState.RUNNING)
        timer = self._arm_timeout()
        try:
            outcome = await self._host.run_source(
                self._source_code,
                self._broker.request_input,
                on_output=self._on_chunk,
                seed=self._seed,
            )
        finally:
            if timer is not None:
                timer.cancel()

        if self._abort_task is not None:
            await asyncio.gather(self._abort_task, return_exceptions=True)
        return self._classify(outcome)

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """
        Abort the session.

        A queued session fails immediately; a running one has its pending
        input rejected and its run interrupted.  Returns False if the session
        had already finished or was already being aborted.
        """
        if self._state.terminal or self._abort_reason is not None:
            return False
        self._abort_reason = SessionCancelled(reason)
        logger.info("Cancelling session %s: %s", self.id, reason)
        self._begin_abort()
        return True

    def _expire(self) -> None:
        if self._state.terminal or self._abort_reason is not None:
            return
        assert self._timeout is not None
        self._abort_reason = SessionTimeout(self._timeout)
        logger.info("Session %s timed out after %gs", self.id, self._timeout)
        self._begin_abort()

    def _begin_abort(self) -> None:
        reason = self._abort_reason
        assert reason is not None
        if self._state is SessionState.IDLE:
            self._finish_failure(reason)
            return
        self._broker.reject_pending(reason)
        if self._state in (SessionState.RUNNING, SessionState.AWAITING_INPUT):
            loop = self._loop or asyncio.get_running_loop()
            self._abort_task = loop.create_task(
                self._host.abort(grace=self.config.abort_grace_seconds)
            )

    def _arm_timeout(self) -> asyncio.TimerHandle | None:
        if not self._timeout or self._timeout <= 0:
            return None
        assert self._loop is not None
        return self._loop.call_later(self._timeout, self._expire)

    # ── Classification ────────────────────────────────────────────────

    def _classify(self, outcome: RawOutcome) -> ExecutionResult:
        if self._abort_reason is not None and not outcome.ok:
            return self._finish_failure(self._abort_reason)
        if self._broker.failure is not None:
            return self._finish_failure(self._broker.failure)
        if outcome.input_aborted:
            return self._finish(
                FailureKind.INPUT_PROTOCOL, outcome.error or "Input request failed"
            )
        if outcome.interrupted:
            return self._finish(FailureKind.CANCELLED, "Execution cancelled: interrupted")
        if outcome.error is not None:
            return self._finish(FailureKind.EXECUTION, outcome.error)
        return self._finish(None, None)

    def _finish_failure(self, failure: BridgeFailure) -> ExecutionResult:
        return self._finish(FailureKind(failure.kind), failure.message)

    def _finish(self, kind: FailureKind | None, error: str | None) -> ExecutionResult:
        if self._result is not None:
            return self._result

        self._pending_prompt = None
        target = SessionState.COMPLETED if kind is None else SessionState.FAILED
        self._transition(target)

        with self._chunk_lock:
            chunks = list(self._chunks)
        duration_ms = 0.0
        if self._started_at is not None:
            duration_ms = (time.perf_counter() - self._started_at) * 1000

        fields: dict[str, Any] = {
            "output": "".join(c.text for c in chunks if c.kind in (STDOUT, PROMPT)),
            "stderr": "".join(c.text for c in chunks if c.kind == STDERR),
            "transcript": "".join(c.text for c in chunks),
            "inputs": self._broker.history,
            "duration_ms": duration_ms,
            "seed": self._seed,
        }
        if kind is None:
            result = ExecutionResult.completed(self.id, **fields)
        else:
            result = ExecutionResult.failed(self.id, kind, error or kind.value, **fields)

        self._result = result
        logger.debug(
            "Session %s finished: %s%s",
            self.id,
            target.value,
            f" ({kind.value})" if kind is not None else "",
        )
        self._emit(BridgeEventType.SESSION_FINISHED, result=result.to_dict())
        return result

    # ── Transitions ───────────────────────────────────────────────────

    def _transition(self, target: SessionState) -> None:
        current = self._state
        if target not in _TRANSITIONS[current]:
            raise SessionStateError(current.value, target.value)
        self._state = target
        logger.debug("Session %s: %s -> %s", self.id, current.value, target.value)
        self._emit(BridgeEventType.SESSION_STATE, previous=current.value, state=target.value)

    # ── Broker callbacks (event loop thread) ──────────────────────────

    def _on_input_requested(self, request: InputRequest) -> None:
        self._transition(SessionState.AWAITING_INPUT)
        self._pending_prompt = request.prompt
        if self._abort_reason is not None:
            request.reject(self._abort_reason)
            return
        self._emit(
            BridgeEventType.INPUT_REQUESTED, prompt=request.prompt, sequence=request.sequence
        )

    def _on_input_resolved(self, record: InputRecord) -> None:
        if self.config.echo_input:
            self._on_chunk(OutputChunk(INPUT, record.value + "\n"))
        self._emit(BridgeEventType.INPUT_RESOLVED, prompt=record.prompt, value=record.value)

    def _on_input_settled(self, request: InputRequest) -> None:
        # Any settle resumes the script, not only a delivered value.
        self._pending_prompt = None
        if self._state is SessionState.AWAITING_INPUT:
            self._transition(SessionState.RUNNING)

    # ── Output ────────────────────────────────────────────────────────

    def _on_chunk(self, chunk: OutputChunk) -> None:
        """Record a chunk; called from the script thread or the loop."""
        if self._result is not None:
            return
        with self._chunk_lock:
            self._chunks.append(chunk)
        loop = self._loop
        if loop is None or (self._on_output is None and self._events is None):
            return
        try:
            loop.call_soon_threadsafe(self._deliver, chunk)
        except RuntimeError:
            logger.debug("Event loop closed; dropping output chunk for %s", self.id)

    def _deliver(self, chunk: OutputChunk) -> None:
        if self._on_output is not None:
            try:
                self._on_output(chunk)
            except Exception:
                logger.warning("Output sink failed for session %s", self.id, exc_info=True)
        self._emit(BridgeEventType.OUTPUT, kind=chunk.kind, text=chunk.text)

    def _emit(self, event_type: BridgeEventType, **payload: Any) -> None:
        if self._events is not None:
            self._events.emit(event_type, self.id, **payload)

    def __repr__(self) -> str:
        return f"ExecutionSession(id={self.id!r}, state={self._state.value!r})"
