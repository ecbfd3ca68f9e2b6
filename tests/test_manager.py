"""
Tests for the session manager and the module-level API.
"""

import asyncio

import pytest

import script_bridge.session.manager as manager_module
from script_bridge.core.config import BridgeConfig
from script_bridge.events import BridgeEventType
from script_bridge.sandbox.host import SandboxHost
from script_bridge.session.handlers import ScriptedInputHandler
from script_bridge.session.manager import SessionManager
from script_bridge.session.types import FailureKind, SessionState


def _lifecycle_log(manager):
    log = []

    def record(event):
        if event.event_type in (BridgeEventType.SESSION_STARTED, BridgeEventType.SESSION_FINISHED):
            log.append((event.event_type.value, event.session_id))

    manager.events.subscribe(record)
    return log


class TestInitialization:
    """Host lifecycle through the manager."""

    @pytest.mark.asyncio
    async def test_is_ready_has_no_side_effects(self, make_loader):
        loader = make_loader()
        manager = SessionManager(host=SandboxHost(loader=loader))

        assert manager.is_ready() is False
        assert loader.calls == 0

        await manager.initialize()
        assert manager.is_ready() is True

    @pytest.mark.asyncio
    async def test_concurrent_first_runs_load_once(self, make_loader):
        loader = make_loader(delay=0.05)
        manager = SessionManager(host=SandboxHost(loader=loader))

        results = await asyncio.gather(
            manager.initialize(),
            manager.execute("print(1)"),
            manager.execute("print(2)"),
        )

        assert loader.calls == 1
        assert [r.output for r in results[1:]] == ["1\n", "2\n"]

    @pytest.mark.asyncio
    async def test_shutdown_tears_down_host(self, manager):
        await manager.initialize()
        await manager.shutdown()
        assert manager.is_ready() is False

    def test_host_built_from_config(self):
        config = BridgeConfig()
        config.runtime.max_output_chars = 10
        manager = SessionManager(config)
        assert manager.host.runtime_name == "local"


class TestSerialization:
    """One session at a time, FIFO."""

    @pytest.mark.asyncio
    async def test_second_session_waits_for_first(self, manager):
        log = _lifecycle_log(manager)
        release = asyncio.Event()
        observed_active = []

        async def slow_handler(prompt):
            observed_active.append(manager.active_session.id)
            await release.wait()
            return "first"

        first = asyncio.create_task(manager.execute_interactive("print(input())", slow_handler))
        await asyncio.sleep(0.05)
        second = asyncio.create_task(manager.execute("print('second')"))
        await asyncio.sleep(0.05)

        assert len(manager.sessions) == 2
        assert [event for event, _ in log] == ["session_started"]

        release.set()
        first_result, second_result = await asyncio.gather(first, second)

        assert first_result.output == "first\n"
        assert second_result.output == "second\n"
        assert [event for event, _ in log] == [
            "session_started",
            "session_finished",
            "session_started",
            "session_finished",
        ]
        assert log[0][1] == log[1][1] == first_result.session_id == observed_active[0]
        assert manager.sessions == ()

    @pytest.mark.asyncio
    async def test_fifo_order(self, manager):
        order = []

        async def run(tag):
            result = await manager.execute(f"print('{tag}')")
            order.append(result.output.strip())

        await asyncio.gather(*(run(tag) for tag in ["a", "b", "c", "d"]))
        assert order == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_failure_does_not_block_queue(self, manager, sample_failing_code):
        results = await asyncio.gather(
            manager.execute(sample_failing_code),
            manager.execute("print('next')"),
        )
        assert results[0].kind is FailureKind.EXECUTION
        assert results[1].success is True


class TestExecute:
    """Non-interactive execution."""

    @pytest.mark.asyncio
    async def test_pre_supplied_inputs(self, manager, sample_interactive_code):
        result = await manager.execute(sample_interactive_code, ["20", "22"])
        assert result.success is True
        assert result.output.endswith("sum: 42\n")

    @pytest.mark.asyncio
    async def test_exhausted_inputs_raise_eof_in_script(self, manager):
        code = "a = input('a: ')\ntry:\n    b = input('b: ')\nexcept EOFError:\n    print('ran out')"
        result = await manager.execute(code, ["1"])
        assert result.success is True
        assert result.output == "a: b: ran out\n"

    @pytest.mark.asyncio
    async def test_input_after_exhaustion_is_a_script_error(self, manager):
        code = "try:\n    input('a: ')\nexcept EOFError:\n    print('eof')\nprint(input('b: '))"
        result = await manager.execute(code, [])

        assert result.kind is FailureKind.EXECUTION
        assert result.error.startswith("EOFError")
        assert result.output == "a: eof\nb: "

        after = await manager.execute("print('next')")
        assert after.success is True

    @pytest.mark.asyncio
    async def test_per_call_timeout(self, manager):
        result = await manager.execute("while True:\n    pass", timeout=0.2)
        assert result.kind is FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_on_output(self, manager):
        seen = []
        await manager.execute("print('x')", on_output=seen.append)
        await asyncio.sleep(0)
        assert "".join(c.text for c in seen) == "x\n"


class TestHandles:
    """start_session() and SessionHandle."""

    @pytest.mark.asyncio
    async def test_handle_result(self, manager):
        handle = manager.start_session("print('hi')", ScriptedInputHandler())
        assert handle.id
        result = await handle
        assert result.output == "hi\n"
        assert handle.done()
        assert handle.state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_queued_session(self, manager):
        asked = asyncio.Event()

        async def blocking(prompt):
            asked.set()
            await asyncio.Event().wait()

        running = manager.start_session("input()", blocking)
        await asked.wait()
        queued = manager.start_session("print('never')", ScriptedInputHandler())
        await asyncio.sleep(0)

        assert queued.cancel("user left") is True
        assert queued.state is SessionState.FAILED
        assert manager.cancel(running.id) is True

        queued_result = await queued.result()
        running_result = await running.result()

        assert queued_result.kind is FailureKind.CANCELLED
        assert queued_result.error == "Execution cancelled: user left"
        assert queued_result.output == ""
        assert running_result.kind is FailureKind.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_all(self, manager):
        asked = asyncio.Event()

        async def blocking(prompt):
            asked.set()
            await asyncio.Event().wait()

        handles = [manager.start_session("input()", blocking)]
        await asked.wait()
        handles.append(manager.start_session("print(1)", ScriptedInputHandler()))
        await asyncio.sleep(0)

        assert manager.cancel_all() == 2
        results = [await handle for handle in handles]
        assert all(r.kind is FailureKind.CANCELLED for r in results)

    def test_cancel_unknown_session(self, manager):
        assert manager.cancel("missing") is False


class TestDefaultManager:
    """Module-level API backed by the process-wide manager."""

    @pytest.fixture(autouse=True)
    def _isolated_default(self, monkeypatch):
        monkeypatch.setattr(manager_module, "_default_manager", None)

    def test_get_default_manager_is_a_singleton(self):
        assert manager_module.get_default_manager() is manager_module.get_default_manager()

    def test_is_ready_does_not_create_manager(self):
        assert manager_module.is_ready() is False
        assert manager_module._default_manager is None

    @pytest.mark.asyncio
    async def test_module_level_api(self, make_loader):
        loader = make_loader()
        manager_module.configure_default_manager(host=SandboxHost(loader=loader))

        await manager_module.initialize()
        assert manager_module.is_ready() is True

        async def handler(prompt):
            return "21"

        result = await manager_module.execute_interactive("print(int(input()) * 2)", handler)
        assert result.to_dict() == {"success": True, "output": "42\n"}

        result = await manager_module.execute("print(input())", ["x"])
        assert result.output == "x\n"
        assert loader.calls == 1
