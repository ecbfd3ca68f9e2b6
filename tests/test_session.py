"""
Tests for ExecutionSession: lifecycle, output, input and failure handling.
"""

import asyncio

import pytest

from script_bridge.core.config import SessionConfig
from script_bridge.core.exceptions import SessionStateError
from script_bridge.events import BridgeEventBus, BridgeEventType
from script_bridge.sandbox.capture import INPUT, PROMPT, STDOUT, OutputChunk
from script_bridge.sandbox.host import SandboxHost
from script_bridge.session.handlers import CallbackInputHandler, ScriptedInputHandler
from script_bridge.session.session import ExecutionSession
from script_bridge.session.types import (
    ExecutionResult,
    FailureKind,
    InputRecord,
    SessionState,
)


def _session(code, host, handler=None, **kwargs):
    config = kwargs.pop("config", None) or SessionConfig(
        timeout_seconds=10.0, abort_grace_seconds=1.0
    )
    return ExecutionSession(
        code, host, handler or ScriptedInputHandler(), config=config, **kwargs
    )


def _blocking_handler(asked: asyncio.Event):
    async def handler(prompt):
        asked.set()
        await asyncio.Event().wait()

    return handler


class TestCompletion:
    """Successful runs."""

    @pytest.mark.asyncio
    async def test_output_fidelity(self, host):
        session = _session('print("a")\nprint("b")', host)
        result = await session.run()

        assert result.success is True
        assert result.output == "a\nb\n"
        assert result.error is None
        assert result.kind is None
        assert session.state is SessionState.COMPLETED
        assert result.to_dict() == {"success": True, "output": "a\nb\n"}

    @pytest.mark.asyncio
    async def test_resume_correctness(self, host):
        session = _session("x = input()\nprint(int(x) * 2)", host, ScriptedInputHandler(["21"]))
        result = await session.run()

        assert result.success is True
        assert result.output == "42\n"
        assert result.transcript == "21\n42\n"
        assert result.inputs == (InputRecord("", "21"),)

    @pytest.mark.asyncio
    async def test_input_ordering(self, host, sample_interactive_code):
        handler = ScriptedInputHandler(["1", "2"])
        session = _session(sample_interactive_code, host, handler)
        result = await session.run()

        assert handler.prompts == ["first: ", "second: "]
        assert result.output == "first: second: sum: 3\n"
        assert result.transcript == "first: 1\nsecond: 2\nsum: 3\n"
        assert [r.value for r in session.input_history] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_output_buffer_keeps_kinds(self, host):
        session = _session("n = input('n? ')\nprint(n)", host, ScriptedInputHandler(["7"]))
        await session.run()

        kinds = [chunk.kind for chunk in session.output_buffer]
        assert kinds[:2] == [PROMPT, INPUT]
        assert set(kinds[2:]) == {STDOUT}

    @pytest.mark.asyncio
    async def test_echo_can_be_disabled(self, host):
        config = SessionConfig(timeout_seconds=10.0, echo_input=False)
        session = _session("print(input('n? '))", host, ScriptedInputHandler(["7"]), config=config)
        result = await session.run()

        assert result.transcript == "n? 7\n"
        assert all(chunk.kind != INPUT for chunk in session.output_buffer)

    @pytest.mark.asyncio
    async def test_sys_exit_zero_completes(self, host):
        result = await _session("import sys\nprint('bye')\nsys.exit()", host).run()
        assert result.success is True
        assert result.output == "bye\n"

    @pytest.mark.asyncio
    async def test_eof_handled_by_script(self, host):
        code = "try:\n    input()\nexcept EOFError:\n    print('eof')"
        result = await _session(code, host, ScriptedInputHandler([])).run()
        assert result.success is True
        assert result.output == "eof\n"

    @pytest.mark.asyncio
    async def test_input_after_eof(self, host):
        answers = iter([None, "later"])
        bus = BridgeEventBus()
        states = []
        bus.subscribe_to_type(
            BridgeEventType.SESSION_STATE, lambda e: states.append(e.payload["state"])
        )
        code = (
            "try:\n"
            "    input('a: ')\n"
            "except EOFError:\n"
            "    print('eof')\n"
            "print(input('b: '))\n"
        )
        session = _session(
            code, host, CallbackInputHandler(lambda prompt: next(answers)), events=bus
        )
        result = await session.run()

        assert result.success is True
        assert result.output == "a: eof\nb: later\n"
        assert result.inputs == (InputRecord("b: ", "later"),)
        assert session.pending_prompt is None
        assert states[-5:] == [
            "awaiting_input",
            "running",
            "awaiting_input",
            "running",
            "completed",
        ]

    @pytest.mark.asyncio
    async def test_seed_reproduces_random_output(self, host):
        code = "import random\nprint(random.randint(0, 10**6))"
        first = await _session(code, host, seed=5).run()
        second = await _session(code, host, seed=5).run()

        assert first.output == second.output
        assert first.seed == 5

    @pytest.mark.asyncio
    async def test_run_twice_returns_same_result(self, host):
        session = _session("print(1)", host)
        first = await session.run()
        assert await session.run() is first


class TestStreaming:
    """Output sink and event delivery."""

    @pytest.mark.asyncio
    async def test_on_output_receives_chunks_in_order(self, host):
        seen = []
        session = _session(
            "a = input('a? ')\nprint('got', a)",
            host,
            ScriptedInputHandler(["x"]),
            on_output=seen.append,
        )
        await session.run()
        await asyncio.sleep(0)

        assert seen[0] == OutputChunk(PROMPT, "a? ")
        assert seen[1] == OutputChunk(INPUT, "x\n")
        assert "".join(c.text for c in seen) == "a? x\ngot x\n"

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_fail_the_session(self, host):
        def sink(chunk):
            raise RuntimeError("ui gone")

        result = await _session("print('ok')", host, on_output=sink).run()
        assert result.success is True
        assert result.output == "ok\n"

    @pytest.mark.asyncio
    async def test_state_events(self):
        bus = BridgeEventBus()
        states = []
        bus.subscribe_to_type(
            BridgeEventType.SESSION_STATE, lambda e: states.append(e.payload["state"])
        )
        session = _session(
            "input()\nprint('done')",
            SandboxHost(),
            ScriptedInputHandler(["v"]),
            events=bus,
        )
        await session.run()

        assert states == ["initializing", "running", "awaiting_input", "running", "completed"]

    @pytest.mark.asyncio
    async def test_skips_initializing_when_host_ready(self, host):
        await host.initialize()
        bus = BridgeEventBus()
        states = []
        bus.subscribe_to_type(
            BridgeEventType.SESSION_STATE, lambda e: states.append(e.payload["state"])
        )
        await _session("pass", host, events=bus).run()
        assert states == ["running", "completed"]

    @pytest.mark.asyncio
    async def test_awaiting_input_state_visible_to_handler(self, host):
        observed = []
        holder = {}

        async def handler(prompt):
            session = holder["session"]
            observed.append((session.state, session.pending_prompt))
            return "ok"

        session = _session("input('go? ')", host, handler)
        holder["session"] = session
        await session.run()

        assert observed == [(SessionState.AWAITING_INPUT, "go? ")]
        assert session.pending_prompt is None


class TestFailures:
    """Failure classification."""

    @pytest.mark.asyncio
    async def test_error_surfacing_keeps_prior_output(self, host, sample_failing_code):
        result = await _session(sample_failing_code, host).run()

        assert result.success is False
        assert result.kind is FailureKind.EXECUTION
        assert result.error == "ZeroDivisionError: division by zero"
        assert result.output == "before\n"
        assert "Traceback" in result.stderr
        assert result.to_dict() == {
            "success": False,
            "output": "before\n",
            "error": "ZeroDivisionError: division by zero",
            "kind": "execution",
        }

    @pytest.mark.asyncio
    async def test_host_reusable_after_error(self, host, sample_failing_code):
        await _session(sample_failing_code, host).run()
        result = await _session("print('fine')", host).run()
        assert result.success is True

    @pytest.mark.asyncio
    async def test_uncaught_eof_is_an_execution_error(self, host):
        result = await _session("a = input()\nb = input()", host, ScriptedInputHandler(["1"])).run()
        assert result.kind is FailureKind.EXECUTION
        assert result.error.startswith("EOFError")

    @pytest.mark.asyncio
    async def test_handler_failure(self, host):
        async def handler(prompt):
            raise RuntimeError("websocket closed")

        code = "try:\n    input()\nexcept Exception:\n    print('caught')\nprint('after')"
        result = await _session(code, host, handler).run()

        assert result.kind is FailureKind.INPUT_PROTOCOL
        assert result.error.startswith("Input request failed:")
        assert "websocket closed" in result.error
        assert "caught" not in result.output
        assert result.success is False

    @pytest.mark.asyncio
    async def test_non_string_input(self, host):
        async def handler(prompt):
            return None

        result = await _session("input()", host, handler).run()
        assert result.kind is FailureKind.INPUT_PROTOCOL

    @pytest.mark.asyncio
    async def test_init_failure(self, make_loader):
        host = SandboxHost(loader=make_loader(failures=1))
        session = _session("print(1)", host)
        result = await session.run()

        assert result.kind is FailureKind.INIT
        assert result.error.startswith("Failed to initialize interpreter")
        assert session.state is SessionState.FAILED

        retry = await _session("print(1)", host).run()
        assert retry.success is True

    @pytest.mark.asyncio
    async def test_timeout_in_busy_loop(self, host):
        session = _session("while True:\n    pass", host, timeout=0.2)
        result = await session.run()

        assert result.kind is FailureKind.TIMEOUT
        assert result.error == "Execution exceeded 0.2s timeout"
        assert host.busy is False

    @pytest.mark.asyncio
    async def test_timeout_while_awaiting_input(self, host):
        asked = asyncio.Event()
        session = _session("input('?')", host, _blocking_handler(asked), timeout=0.2)
        result = await session.run()

        assert asked.is_set()
        assert result.kind is FailureKind.TIMEOUT
        assert result.output == "?"


class TestCancellation:
    """cancel() from every state."""

    @pytest.mark.asyncio
    async def test_cancel_while_awaiting_input(self, host):
        asked = asyncio.Event()
        session = _session("print('start')\ninput('name: ')", host, _blocking_handler(asked))
        task = asyncio.create_task(session.run())
        await asked.wait()

        assert session.state is SessionState.AWAITING_INPUT
        assert session.cancel() is True
        result = await task

        assert result.kind is FailureKind.CANCELLED
        assert result.error == "Execution cancelled: cancelled by user"
        assert result.output == "start\nname: "
        assert session.state is SessionState.FAILED
        assert host.busy is False

        after = await _session("print('next')", host).run()
        assert after.success is True

    @pytest.mark.asyncio
    async def test_cancel_running_script_that_swallows_exceptions(self, host):
        code = (
            "while True:\n"
            "    try:\n"
            "        pass\n"
            "    except Exception:\n"
            "        pass\n"
        )
        session = _session(code, host)
        task = asyncio.create_task(session.run())
        await asyncio.sleep(0.1)

        session.cancel("stop button")
        result = await task
        assert result.kind is FailureKind.CANCELLED
        assert result.error == "Execution cancelled: stop button"

    @pytest.mark.asyncio
    async def test_cancel_when_script_swallows_the_interrupt(self, host):
        asked = asyncio.Event()
        code = (
            "try:\n"
            "    input('q')\n"
            "except BaseException as e:\n"
            "    print('caught', type(e).__name__)\n"
            "print('after')\n"
        )
        session = _session(code, host, _blocking_handler(asked))
        task = asyncio.create_task(session.run())
        await asked.wait()

        assert session.cancel() is True
        result = await task

        assert result.kind is FailureKind.CANCELLED
        assert result.error == "Execution cancelled: cancelled by user"
        assert result.output.startswith("qcaught ")
        assert result.output.endswith("after\n")
        assert session.state is SessionState.FAILED
        assert host.busy is False

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, host):
        session = _session("print(1)", host)
        assert session.cancel() is True

        assert session.state is SessionState.FAILED
        result = await session.run()
        assert result.kind is FailureKind.CANCELLED
        assert result.output == ""

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_a_no_op(self, host):
        session = _session("print(1)", host)
        await session.run()
        assert session.cancel() is False
        assert session.state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_state_is_immutable(self, host):
        session = _session("pass", host)
        await session.run()
        with pytest.raises(SessionStateError):
            session._transition(SessionState.RUNNING)


class TestExecutionResult:
    """The tagged result type."""

    def test_success_cannot_carry_error(self):
        with pytest.raises(ValueError):
            ExecutionResult(session_id="s", success=True, error="oops")

    def test_failure_needs_kind_and_error(self):
        with pytest.raises(ValueError):
            ExecutionResult(session_id="s", success=False, error="oops")
        with pytest.raises(ValueError):
            ExecutionResult(session_id="s", success=False, kind=FailureKind.EXECUTION)

    def test_constructors(self):
        ok = ExecutionResult.completed("s", output="hi\n")
        bad = ExecutionResult.failed("s", FailureKind.TIMEOUT, "too slow")
        assert ok.success and ok.output == "hi\n"
        assert not bad.success and bad.kind is FailureKind.TIMEOUT
