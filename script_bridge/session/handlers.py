"""
Input handlers for different interaction modes.

Provides ready-made ``input_handler`` callables:
- Scripted: Pre-supplied values, end of input once they run out
- Console: Interactive terminal prompts
- Callback: Adapts a plain (sync or async) function
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Callable, Iterable

from rich.console import Console


class InputHandlerBase(ABC):
    """Base class for input handlers; instances are async callables."""

    @abstractmethod
    async def __call__(self, prompt: str) -> str:
        """Return the value ``input(prompt)`` should produce."""
        ...


class ScriptedInputHandler(InputHandlerBase):
    """
    Answers prompts from a fixed list of values, in order.

    Once the list is exhausted every further request raises ``EOFError``,
    which the script sees exactly like a closed stdin.
    """

    def __init__(self, values: Iterable[str] = (), delay: float = 0.0):
        self._values = deque(str(value) for value in values)
        self.delay = delay
        self.prompts: list[str] = []

    @property
    def remaining(self) -> int:
        return len(self._values)

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self._values:
            raise EOFError("EOF when reading a line")
        return self._values.popleft()


class ConsoleInputHandler(InputHandlerBase):
    """
    Interactive console-based input handler.

    Reads one line from the terminal per request.  The script's prompt is
    normally already on screen through the output sink, so it is only
    repeated when ``show_prompt`` is set.
    """

    def __init__(self, console: Console | None = None, show_prompt: bool = False):
        self.console = console or Console()
        self.show_prompt = show_prompt

    async def __call__(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        # Run input in executor to not block event loop
        return await loop.run_in_executor(None, self._read_line, prompt)

    def _read_line(self, prompt: str) -> str:
        return self.console.input(prompt if self.show_prompt else "")


class CallbackInputHandler(InputHandlerBase):
    """
    Callback-based input handler.

    Delegates to a custom function, enabling integration with external
    systems (web UI, chat, tests).  The callback may be sync or async;
    returning ``None`` means end of input.
    """

    def __init__(self, callback: Callable[[str], str | None | Awaitable[str | None]]):
        self.callback = callback

    async def __call__(self, prompt: str) -> str:
        value = self.callback(prompt)
        if inspect.isawaitable(value):
            value = await value
        if value is None:
            raise EOFError("EOF when reading a line")
        return value
