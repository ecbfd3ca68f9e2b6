"""
Sandbox layer: the embedded interpreter, its runtimes and output capture.
"""

from .capture import (
    INPUT,
    PROMPT,
    STDERR,
    STDOUT,
    CapturedOutput,
    OutputCapture,
    OutputChunk,
    capture_output,
    with_capture,
)
from .host import HostState, RawOutcome, SandboxHost
from .runtimes import (
    RuntimeDescriptor,
    ScriptError,
    ScriptInterpreter,
    detect_runtime_health,
    load_runtime,
)

__all__ = [
    "CapturedOutput",
    "HostState",
    "INPUT",
    "OutputCapture",
    "OutputChunk",
    "PROMPT",
    "RawOutcome",
    "RuntimeDescriptor",
    "STDERR",
    "STDOUT",
    "SandboxHost",
    "ScriptError",
    "ScriptInterpreter",
    "capture_output",
    "detect_runtime_health",
    "load_runtime",
    "with_capture",
]
