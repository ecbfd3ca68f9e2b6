"""
Command-line interface for Script Bridge.

    script-bridge run hello.py
    script-bridge run guess.py --seed 7 --input 50 --input 25
    script-bridge doctor
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .core.config import BridgeConfig
from .core.exceptions import ConfigurationError
from .core.logging import setup_logging
from .sandbox.capture import INPUT, STDERR, OutputChunk
from .sandbox.runtimes import detect_runtime_health
from .session.handlers import ConsoleInputHandler, ScriptedInputHandler
from .session.manager import SessionManager
from .session.types import ExecutionResult, InputHandler

COLORS = {
    "success": "#9ECE6A",
    "error": "#F7768E",
    "muted": "#565F89",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="script-bridge",
        description="Run interactive Python scripts inside a sandboxed interpreter.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a script file")
    run.add_argument("file", type=Path, help="Python script to run")
    run.add_argument("--runtime", choices=["local", "monty"], help="Interpreter runtime")
    run.add_argument("--timeout", type=float, help="Wall-clock limit in seconds (0 disables)")
    run.add_argument("--seed", type=int, help="Seed the random module before running")
    run.add_argument("--config", type=Path, help="YAML or JSON configuration file")
    run.add_argument(
        "--input",
        dest="inputs",
        action="append",
        metavar="VALUE",
        help="Answer the next input() call with VALUE (repeatable); disables prompting",
    )
    run.add_argument("--json", action="store_true", help="Print the result as JSON")
    run.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")

    subparsers.add_parser("doctor", help="Show which interpreter runtimes are available")
    return parser


def load_config(args: argparse.Namespace) -> BridgeConfig:
    if args.config is not None:
        config = BridgeConfig.load_from_file(args.config)
    else:
        config = BridgeConfig()
        config.apply_env_overrides()

    if args.runtime:
        config.runtime.name = args.runtime
    if args.timeout is not None:
        config.session.timeout_seconds = args.timeout if args.timeout > 0 else None
    if args.log_level:
        config.logging.level = args.log_level.upper()
    return config


class TerminalSink:
    """Writes streamed output chunks to the terminal."""

    def __init__(self, console: Console, show_input: bool):
        self.console = console
        self.show_input = show_input

    def __call__(self, chunk: OutputChunk) -> None:
        if chunk.kind == INPUT and not self.show_input:
            # the terminal already echoed what the user typed
            return
        style = COLORS["error"] if chunk.kind == STDERR else None
        self.console.print(chunk.text, end="", style=style, markup=False, highlight=False)


async def run_script(
    code: str,
    config: BridgeConfig,
    input_handler: InputHandler,
    console: Console,
    *,
    seed: int | None = None,
    show_input: bool = False,
) -> ExecutionResult:
    manager = SessionManager(config)
    try:
        return await manager.execute_interactive(
            code,
            input_handler,
            on_output=TerminalSink(console, show_input),
            seed=seed,
        )
    finally:
        await manager.shutdown()


def cmd_run(args: argparse.Namespace, console: Console) -> int:
    try:
        config = load_config(args)
        code = args.file.read_text(encoding="utf-8")
    except (ConfigurationError, OSError) as e:
        console.print(f"[bold {COLORS['error']}]Error:[/] {escape(str(e))}")
        return 2

    setup_logging(config.logging.level, rich=config.logging.rich)

    scripted = args.inputs is not None
    handler: InputHandler
    if scripted:
        handler = ScriptedInputHandler(args.inputs)
    else:
        handler = ConsoleInputHandler(console)

    output_console = Console(stderr=True) if args.json else console
    result = asyncio.run(
        run_script(code, config, handler, output_console, seed=args.seed, show_input=scripted)
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif not result.success:
        console.print()
        console.print(f"[bold {COLORS['error']}]{result.kind.value}:[/] {escape(result.error or '')}")
    else:
        console.print(f"[{COLORS['muted']}]finished in {result.duration_ms:.0f} ms[/]")
    return 0 if result.success else 1


def cmd_doctor(console: Console) -> int:
    table = Table(title="Interpreter runtimes")
    table.add_column("Runtime", style="bold")
    table.add_column("Available")
    table.add_column("Detail")
    for health in detect_runtime_health().values():
        mark = f"[{COLORS['success']}]yes[/]" if health.available else f"[{COLORS['error']}]no[/]"
        table.add_row(health.runtime, mark, health.detail)
    console.print(table)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()

    if args.command == "doctor":
        return cmd_doctor(console)
    return cmd_run(args, console)


if __name__ == "__main__":
    sys.exit(main())
