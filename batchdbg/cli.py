from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from platformdirs import user_log_path

from batchdbg import __version__
from batchdbg.console import DebugConsole
from batchdbg.core.config import RuntimeConfig, get_runtime_config
from batchdbg.core.errors import BatchDebugError, format_error, wrap_error
from batchdbg.core.logging import configure_logging
from batchdbg.debugger.controller import DebugController
from batchdbg.interpreter.state import Status
from batchdbg.script.model import SourceLine
from batchdbg.shell.exchange import CommandResult

APP_NAME = "batchdbg"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Step through Windows Batch scripts against a live shell.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Print version and exit.",
    )
    parser.add_argument(
        "--log-file",
        action="store_true",
        help=f"Write JSON logs under {user_log_path(APP_NAME)}.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    debug_parser = subparsers.add_parser(
        "debug",
        help="Debug a script interactively.",
    )
    debug_parser.add_argument("script", help="Path to the .bat/.cmd script.")
    debug_parser.add_argument(
        "-b",
        "--break",
        dest="breakpoints",
        action="append",
        type=int,
        default=[],
        metavar="LINE",
        help="Set a breakpoint at a physical line number (repeat for several).",
    )
    debug_parser.add_argument(
        "--no-stop-on-entry",
        action="store_true",
        help="Run until the first breakpoint instead of stopping at line 1.",
    )
    debug_parser.set_defaults(handler=handle_debug)

    run_parser = subparsers.add_parser(
        "run",
        help="Run a script to completion through the interpreter.",
    )
    run_parser.add_argument("script", help="Path to the .bat/.cmd script.")
    run_parser.set_defaults(handler=handle_run)

    config_parser = subparsers.add_parser(
        "print-config",
        help="Print the resolved runtime config to stdout.",
    )
    config_parser.set_defaults(handler=handle_print_config)

    return parser


def handle_debug(args: argparse.Namespace, config: RuntimeConfig) -> int:
    if args.no_stop_on_entry:
        config = config.model_copy(update={"stop_on_entry": False})

    controller = DebugController(config)
    console = DebugConsole(controller)

    model = controller.load(args.script)
    for physical in args.breakpoints:
        try:
            controller.set_breakpoint(model.index_for_physical(physical))
        except (IndexError, ValueError) as exc:
            raise SystemExit(f"Invalid breakpoint {physical}: {exc}") from exc

    with controller:
        return console.run()


def handle_run(args: argparse.Namespace, config: RuntimeConfig) -> int:
    config = config.model_copy(update={"stop_on_entry": False})

    def echo_output(_source: SourceLine, result: CommandResult) -> None:
        for line in result.output_lines:
            print(line)

    with DebugController(config, output_handler=echo_output) as controller:
        controller.load(args.script)
        snapshot = controller.start()
        # PAUSE lines suspend the interpreter; a non-interactive run carries on.
        while snapshot.status is Status.SUSPENDED:
            snapshot = controller.continue_run()

    if snapshot.status is Status.FAILED and snapshot.failure is not None:
        print(f"batchdbg: {snapshot.failure.describe()}", file=sys.stderr)
        return 1
    return snapshot.exit_code or 0


def handle_print_config(_args: argparse.Namespace, config: RuntimeConfig) -> int:
    payload = {
        "runtime": config.model_dump(),
        "log_dir": str(user_log_path(APP_NAME)),
    }
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = get_runtime_config()

    log_dir = Path(config.log_dir) if config.log_dir else None
    if args.log_file:
        log_dir = Path(user_log_path(APP_NAME))
    configure_logging(level=config.log_level, format_name=config.log_format, log_dir=log_dir)

    try:
        return args.handler(args, config)
    except (BatchDebugError, OSError) as exc:
        error = wrap_error(exc, code="os_error", message="Operation failed")
        print(f"batchdbg: {format_error(error)}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
