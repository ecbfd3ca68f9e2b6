"""
Output capture for sandboxed script runs.

``capture_output()`` swaps ``sys.stdout`` / ``sys.stderr`` for streams that
route by thread: writes made on the thread that opened the capture land in
the capture buffers, writes from any other thread (the event loop, logging,
a UI) pass straight through to the original streams.  A script parked on
``input()`` therefore never swallows host output.

stdout and stderr are kept as two independent ordered logs.  Every write is
also recorded as an ``OutputChunk`` and forwarded to an optional ``on_chunk``
callback so callers can stream output while the script is still running.
"""

from __future__ import annotations

import io
import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TextIO

from ..core.logging import get_logger

logger = get_logger(__name__)

STDOUT = "stdout"
STDERR = "stderr"
PROMPT = "prompt"
INPUT = "input"

TRUNCATION_MARKER = "... [truncated]"


@dataclass(frozen=True, slots=True)
class OutputChunk:
    """One piece of output, tagged with the stream it belongs to."""

    kind: str
    text: str


@dataclass(slots=True)
class CapturedOutput:
    """Flattened result of one capture scope."""

    stdout: str = ""
    stderr: str = ""
    chunks: list[OutputChunk] = field(default_factory=list)
    truncated: bool = False


ChunkCallback = Callable[[OutputChunk], None]


class CaptureBuffer(io.TextIOBase):
    """Text stream that records writes as tagged chunks."""

    def __init__(
        self,
        kind: str,
        sink: Callable[[str, str], str | None],
    ) -> None:
        super().__init__()
        self._kind = kind
        self._sink = sink
        self._parts: list[str] = []

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return "utf-8"

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        return self.write_as(self._kind, text)

    def write_as(self, kind: str, text: str) -> int:
        """Write *text* into this stream's log but tag the chunk as *kind*."""
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        if not text:
            return 0
        stored = self._sink(kind, text)
        if stored:
            self._parts.append(stored)
        return len(text)

    def flush(self) -> None:
        return None

    def getvalue(self) -> str:
        return "".join(self._parts)


class _ThreadRoutedStream(io.TextIOBase):
    """Sends the owner thread's writes to a buffer, everything else to the fallback."""

    def __init__(self, target: CaptureBuffer, fallback: TextIO, owner: int) -> None:
        super().__init__()
        self._target = target
        self._fallback = fallback
        self._owner: int | None = owner

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._fallback, "encoding", None) or "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def _routes_here(self) -> bool:
        return self._owner is not None and threading.get_ident() == self._owner

    def write(self, text: str) -> int:
        if self._routes_here():
            return self._target.write(text)
        return self._fallback.write(text)

    def flush(self) -> None:
        if not self._routes_here():
            self._fallback.flush()

    def release(self) -> None:
        """Stop capturing; forward every later write to the fallback stream."""
        self._owner = None


class OutputCapture:
    """
    Buffers for one execution.

    Holds the stdout and stderr logs plus the ordered chunk sequence across
    both.  Output beyond ``max_output_chars`` (counted over both streams) is
    dropped and the result is marked truncated.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback | None = None,
        *,
        max_output_chars: int | None = None,
    ) -> None:
        self._on_chunk = on_chunk
        self._max_chars = max_output_chars
        self._lock = threading.Lock()
        self._chunks: list[OutputChunk] = []
        self._size = 0
        self._truncated = False
        self.stdout = CaptureBuffer(STDOUT, self._record)
        self.stderr = CaptureBuffer(STDERR, self._record)

    def _record(self, kind: str, text: str) -> str | None:
        """Append a chunk; return the text the stream log should keep."""
        with self._lock:
            if self._truncated:
                return None
            if self._max_chars is not None and self._size + len(text) > self._max_chars:
                text = text[: max(self._max_chars - self._size, 0)] + TRUNCATION_MARKER
                self._truncated = True
            self._size += len(text)
            chunk = OutputChunk(kind=kind, text=text)
            self._chunks.append(chunk)

        if self._on_chunk is not None:
            try:
                self._on_chunk(chunk)
            except Exception:
                logger.debug("Output chunk callback failed", exc_info=True)
        return text

    def write_prompt(self, prompt: str) -> None:
        """Record an input() prompt; it belongs to stdout like in a terminal."""
        self.stdout.write_as(PROMPT, prompt)

    @property
    def truncated(self) -> bool:
        return self._truncated

    def result(self) -> CapturedOutput:
        with self._lock:
            chunks = list(self._chunks)
        return CapturedOutput(
            stdout=self.stdout.getvalue(),
            stderr=self.stderr.getvalue(),
            chunks=chunks,
            truncated=self._truncated,
        )


@contextmanager
def capture_output(
    on_chunk: ChunkCallback | None = None,
    *,
    max_output_chars: int | None = None,
) -> Iterator[OutputCapture]:
    """
    Redirect stdout/stderr of the calling thread into an ``OutputCapture``.

    The original streams are restored on every exit path.  If another capture
    replaced the streams in the meantime, this scope's router is released
    instead so the newer capture stays intact.
    """
    capture = OutputCapture(on_chunk, max_output_chars=max_output_chars)
    owner = threading.get_ident()
    old_stdout, old_stderr = sys.stdout, sys.stderr
    routed_stdout = _ThreadRoutedStream(capture.stdout, old_stdout, owner)
    routed_stderr = _ThreadRoutedStream(capture.stderr, old_stderr, owner)

    sys.stdout = routed_stdout
    sys.stderr = routed_stderr
    try:
        yield capture
    finally:
        routed_stdout.release()
        routed_stderr.release()
        if sys.stdout is routed_stdout:
            sys.stdout = old_stdout
        if sys.stderr is routed_stderr:
            sys.stderr = old_stderr


def with_capture(
    thunk: Callable[[], Any],
    on_chunk: ChunkCallback | None = None,
    *,
    max_output_chars: int | None = None,
) -> CapturedOutput:
    """Run *thunk* under ``capture_output()`` and return what it printed."""
    with capture_output(on_chunk, max_output_chars=max_output_chars) as capture:
        thunk()
    return capture.result()
