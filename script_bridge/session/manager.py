"""
Session manager.

Process-wide registry that owns the sandbox host and serializes sessions:
exactly one session drives the interpreter at a time, later ones wait in
FIFO order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable

from ..core.config import BridgeConfig
from ..core.logging import get_logger
from ..events import BridgeEventBus, BridgeEventType
from ..sandbox.host import SandboxHost
from ..sandbox.runtimes import descriptor_from_config
from .handlers import ScriptedInputHandler
from .session import CONFIG_TIMEOUT, ExecutionSession
from .types import ExecutionResult, InputHandler, OutputSink, SessionState

logger = get_logger(__name__)


class SessionHandle:
    """Caller's view of a started session."""

    def __init__(self, session: ExecutionSession, task: asyncio.Future[ExecutionResult]):
        self._session = session
        self._task = task

    @property
    def id(self) -> str:
        return self._session.id

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> ExecutionSession:
        return self._session

    def done(self) -> bool:
        return self._task.done()

    def cancel(self, reason: str = "cancelled by user") -> bool:
        return self._session.cancel(reason)

    async def result(self) -> ExecutionResult:
        return await asyncio.shield(self._task)

    def __await__(self):
        return self.result().__await__()

    def __repr__(self) -> str:
        return f"SessionHandle(id={self.id!r}, state={self.state.value!r})"


class SessionManager:
    """Serializes script runs against one shared ``SandboxHost``."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        host: SandboxHost | None = None,
        events: BridgeEventBus | None = None,
    ):
        self.config = config or BridgeConfig()
        self.host = host or SandboxHost(
            descriptor_from_config(self.config.runtime),
            max_output_chars=self.config.runtime.max_output_chars,
        )
        self.events = events or BridgeEventBus()
        self._sessions: dict[str, ExecutionSession] = {}
        self._active: ExecutionSession | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    # ── Host lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the interpreter ahead of the first run; raises ``InitFailure``."""
        await self.host.initialize()

    def is_ready(self) -> bool:
        return self.host.ready

    async def shutdown(self) -> None:
        """Cancel every session and tear the host down."""
        self.cancel_all("bridge shutting down")
        await self.host.teardown()

    # ── Registry ──────────────────────────────────────────────────────

    @property
    def active_session(self) -> ExecutionSession | None:
        return self._active

    @property
    def sessions(self) -> tuple[ExecutionSession, ...]:
        """Sessions that are running or waiting for their turn."""
        return tuple(self._sessions.values())

    def get_session(self, session_id: str) -> ExecutionSession | None:
        return self._sessions.get(session_id)

    def cancel(self, session_id: str, reason: str = "cancelled by user") -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.cancel(reason)

    def cancel_all(self, reason: str = "cancelled by user") -> int:
        return sum(1 for session in list(self._sessions.values()) if session.cancel(reason))

    # ── Execution ─────────────────────────────────────────────────────

    def create_session(
        self,
        code: str,
        input_handler: InputHandler,
        *,
        on_output: OutputSink | None = None,
        seed: int | None = None,
        timeout: Any = CONFIG_TIMEOUT,
    ) -> ExecutionSession:
        return ExecutionSession(
            code,
            self.host,
            input_handler,
            config=self.config.session,
            on_output=on_output,
            seed=seed,
            timeout=timeout,
            events=self.events,
        )

    def start_session(
        self,
        code: str,
        input_handler: InputHandler,
        *,
        on_output: OutputSink | None = None,
        seed: int | None = None,
        timeout: Any = CONFIG_TIMEOUT,
    ) -> SessionHandle:
        """Queue a run and return immediately with a handle to it."""
        session = self.create_session(
            code, input_handler, on_output=on_output, seed=seed, timeout=timeout
        )
        task = asyncio.ensure_future(self._run_serialized(session))
        return SessionHandle(session, task)

    async def execute_interactive(
        self,
        code: str,
        input_handler: InputHandler,
        *,
        on_output: OutputSink | None = None,
        seed: int | None = None,
        timeout: Any = CONFIG_TIMEOUT,
    ) -> ExecutionResult:
        """
        Run *code*, asking *input_handler* for every ``input()`` call.

        Waits for earlier sessions to finish first.  Never raises for script,
        handler or interpreter failures; they come back as a failed result.
        """
        session = self.create_session(
            code, input_handler, on_output=on_output, seed=seed, timeout=timeout
        )
        return await self._run_serialized(session)

    async def execute(
        self,
        code: str,
        inputs: Iterable[str] = (),
        *,
        on_output: OutputSink | None = None,
        seed: int | None = None,
        timeout: Any = CONFIG_TIMEOUT,
    ) -> ExecutionResult:
        """Non-interactive run; ``input()`` raises ``EOFError`` once *inputs* run out."""
        return await self.execute_interactive(
            code,
            ScriptedInputHandler(inputs),
            on_output=on_output,
            seed=seed,
            timeout=timeout,
        )

    async def _run_serialized(self, session: ExecutionSession) -> ExecutionResult:
        self._sessions[session.id] = session
        self.events.emit(BridgeEventType.SESSION_QUEUED, session.id, queued=len(self._sessions))
        try:
            async with self._get_lock():
                if session.result is not None:
                    # Cancelled while waiting for its turn
                    return session.result
                self._active = session
                try:
                    return await session.run()
                finally:
                    self._active = None
        finally:
            self._sessions.pop(session.id, None)

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock


# ── Process-wide default ──────────────────────────────────────────────

_default_manager: SessionManager | None = None


def get_default_manager() -> SessionManager:
    """Get or create the process-wide manager."""
    global _default_manager
    if _default_manager is None:
        _default_manager = SessionManager()
    return _default_manager


def configure_default_manager(
    config: BridgeConfig | None = None, host: SandboxHost | None = None
) -> SessionManager:
    """Replace the process-wide manager."""
    global _default_manager
    _default_manager = SessionManager(config, host)
    return _default_manager


async def initialize() -> None:
    await get_default_manager().initialize()


def is_ready() -> bool:
    return _default_manager is not None and _default_manager.is_ready()


async def execute_interactive(
    code: str, input_handler: InputHandler, **kwargs: Any
) -> ExecutionResult:
    return await get_default_manager().execute_interactive(code, input_handler, **kwargs)


async def execute(code: str, inputs: Iterable[str] = (), **kwargs: Any) -> ExecutionResult:
    return await get_default_manager().execute(code, inputs, **kwargs)
