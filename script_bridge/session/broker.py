"""
Input broker.

Bridges the script's synchronous ``input()`` to the UI's asynchronous input
handler.  The host calls ``request_input(prompt)`` on the event loop while
the script thread is parked; the broker asks the handler, records and echoes
the answer, and returns it so the script can continue.  ``on_settled`` fires
once per request however it ended, after ``on_resolved`` on success.

Handler contract:

- return a ``str``: the value ``input()`` returns;
- raise ``EOFError``: end of input, the script sees ``EOFError``;
- raise anything else, return a non-string or exceed the input timeout:
  ``InputProtocolFailure``, the session fails with ``input_protocol``.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from functools import partial
from typing import Callable

from ..core.exceptions import BridgeFailure, InputProtocolFailure
from ..core.logging import get_logger
from .types import InputHandler, InputRecord, InputRequest

logger = get_logger(__name__)


class InputBroker:
    """Serves one session's input requests strictly in request order."""

    def __init__(
        self,
        input_handler: InputHandler,
        *,
        on_requested: Callable[[InputRequest], None] | None = None,
        on_resolved: Callable[[InputRecord], None] | None = None,
        on_settled: Callable[[InputRequest], None] | None = None,
        input_timeout: float | None = None,
    ) -> None:
        if not callable(input_handler):
            raise TypeError("input_handler must be callable")
        self._handler = input_handler
        self._on_requested = on_requested
        self._on_resolved = on_resolved
        self._on_settled = on_settled
        self._input_timeout = input_timeout
        self._history: list[InputRecord] = []
        self._pending: InputRequest | None = None
        self._sequence = itertools.count(1)
        self.failure: InputProtocolFailure | None = None

    @property
    def history(self) -> tuple[InputRecord, ...]:
        return tuple(self._history)

    @property
    def pending(self) -> InputRequest | None:
        return self._pending

    async def request_input(self, prompt: str) -> str:
        """Ask the handler for a value; see the module docstring for outcomes."""
        if self.failure is not None:
            raise self.failure
        if self._pending is not None:
            failure = InputProtocolFailure(
                "a new input request arrived while another was pending",
                {"pending_prompt": self._pending.prompt, "prompt": prompt},
            )
            self.failure = failure
            raise failure

        loop = asyncio.get_running_loop()
        request = InputRequest(
            prompt=prompt,
            sequence=next(self._sequence),
            future=loop.create_future(),
        )
        self._pending = request
        logger.debug("Input request #%d: %r", request.sequence, prompt)
        if self._on_requested is not None:
            self._on_requested(request)

        # on_requested may already have rejected the request (session aborting)
        handler_task: asyncio.Future[str] | None = None
        if not request.settled:
            handler_task = asyncio.ensure_future(self._call_handler(prompt))
            handler_task.add_done_callback(partial(_settle, request))
        try:
            value = await request.future
        except InputProtocolFailure as e:
            self.failure = e
            logger.info("Input request #%d failed: %s", request.sequence, e)
            raise
        else:
            record = InputRecord(prompt=prompt, value=value)
            self._history.append(record)
            if self._on_resolved is not None:
                self._on_resolved(record)
            return value
        finally:
            self._pending = None
            if handler_task is not None and not handler_task.done():
                handler_task.cancel()
            # Runs for every outcome, EOFError and aborts included.
            if self._on_settled is not None:
                self._on_settled(request)

    def reject_pending(self, error: BridgeFailure | EOFError) -> bool:
        """Settle the outstanding request with *error*; False if none was pending."""
        request = self._pending
        if request is None:
            return False
        return request.reject(error)

    async def _call_handler(self, prompt: str) -> str:
        try:
            result = self._handler(prompt)
            if inspect.isawaitable(result):
                if self._input_timeout:
                    result = await asyncio.wait_for(result, self._input_timeout)
                else:
                    result = await result
        except EOFError:
            raise
        except asyncio.TimeoutError as e:
            raise InputProtocolFailure(
                f"no input received within {self._input_timeout:g}s",
                {"prompt": prompt, "timeout": self._input_timeout},
            ) from e
        except Exception as e:
            raise InputProtocolFailure(
                f"input handler raised {type(e).__name__}: {e}",
                {"prompt": prompt, "error_type": type(e).__name__},
            ) from e

        if not isinstance(result, str):
            raise InputProtocolFailure(
                f"input handler returned {type(result).__name__}, expected str",
                {"prompt": prompt},
            )
        return result


def _settle(request: InputRequest, task: asyncio.Future[str]) -> None:
    if task.cancelled():
        request.reject(InputProtocolFailure("input handler was cancelled"))
        return
    error = task.exception()
    if error is not None:
        request.reject(error)
    else:
        request.resolve(task.result())
