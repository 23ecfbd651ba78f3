"""Command-line interface for specsheet.

``specsheet [OPTIONS] INPUT...`` runs the checks in each input document.
The listing modes (``--syntax-check``, ``--list-commands``, ``--list-checks``,
``--list-tags``) read the documents without running anything.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Final, NoReturn

import structlog

from specsheet import __version__
from specsheet.checks.base import DEFAULT_CHECK_REGISTRY, CheckRegistry
from specsheet.checks.execution import CommandExecutor, GlobalOptions
from specsheet.config import load_config
from specsheet.constants import STDIN_INPUT
from specsheet.engine.documents import DocumentLoader, read_document
from specsheet.engine.filter import CheckFilter
from specsheet.engine.rewrite import Rewrites
from specsheet.engine.scheduler import SchedulerConfig
from specsheet.engine.session import RunOptions, RunOutcome, RunSession
from specsheet.engine.supervisor import KillSignal, ReadinessGate, SideProcessConfig
from specsheet.errors import ArgumentError, LoadError
from specsheet.main import ExitCode
from specsheet.observability.logging import configure_logging, logging_config_from_env
from specsheet.ui.reporters import (
    ColorMode,
    DisplayOptions,
    Expand,
    PrintMode,
    Reporter,
    create_reporter,
)
from specsheet.utils.concurrency import CancellationToken

_GATE_FLAGS: Final[tuple[str, ...]] = ("exec_delay", "exec_port", "exec_file", "exec_line")


class _ArgumentParser(argparse.ArgumentParser):
    """argparse, but usage errors become ``ArgumentError`` instead of exit 2."""

    def error(self, message: str) -> NoReturn:
        raise ArgumentError(f"{self.prog}: {message}")


class RunMode:
    RUN = "run"
    SYNTAX_CHECK = "syntax-check"
    LIST_COMMANDS = "list-commands"
    LIST_CHECKS = "list-checks"
    LIST_TAGS = "list-tags"


@dataclass(frozen=True, slots=True)
class Invocation:
    """Command-line flags resolved against settings, ready to act on."""

    mode: str
    inputs: tuple[str, ...]
    check_filter: CheckFilter
    rewrites: Rewrites
    global_options: GlobalOptions
    run_options: RunOptions
    print_mode: PrintMode
    display: DisplayOptions


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="specsheet",
        description="Run the checks declared in one or more check documents.",
    )
    parser.add_argument(
        "inputs", nargs="*", metavar="INPUT", help="check documents ('-' for stdin)"
    )
    parser.add_argument("-v", "--version", action="version", version=f"specsheet {__version__}")
    parser.add_argument("--config", dest="config_path", default=None, help="settings file")

    modes = parser.add_argument_group("running modes").add_mutually_exclusive_group()
    modes.add_argument(
        "-c", "--syntax-check", dest="mode", action="store_const", const=RunMode.SYNTAX_CHECK,
        help="don't run, just check the syntax of the input files",
    )
    modes.add_argument(
        "-C", "--list-commands", dest="mode", action="store_const", const=RunMode.LIST_COMMANDS,
        help="don't run, just list the commands that would be executed",
    )
    modes.add_argument(
        "-l", "--list-checks", dest="mode", action="store_const", const=RunMode.LIST_CHECKS,
        help="don't run, just list the checks that would be run",
    )
    modes.add_argument(
        "--list-tags", dest="mode", action="store_const", const=RunMode.LIST_TAGS,
        help="don't run, just list the tags defined in the documents",
    )

    running = parser.add_argument_group("running options")
    running.add_argument(
        "--random-order", action="store_true", default=None, help="run the checks in a random order"
    )
    running.add_argument(
        "--continual", action="store_true", help="run the checks in continual mode"
    )
    running.add_argument(
        "--delay", type=float, default=None, metavar="SECS",
        help="delay between rounds (and between checks with -j 1)",
    )
    running.add_argument(
        "--directory", choices=("check", "run"), default=None,
        help="run checks from each document's directory or the current one",
    )
    running.add_argument(
        "-j", "--threads", type=int, default=None, metavar="COUNT",
        help="number of checks to run in parallel",
    )
    running.add_argument(
        "-O", "--option", action="append", default=[], metavar="KEY=VALUE",
        help="set a global option",
    )
    running.add_argument(
        "-R", "--rewrite", action="append", default=[], metavar="THIS->THAT",
        help="rewrite values in the input documents",
    )
    running.add_argument("-z", "--analysis", action="store_true", help="analyse failures")

    side = parser.add_argument_group("side process options")
    side.add_argument("-x", "--exec", dest="exec_shell", default=None, metavar="CMD",
                      help="process to run in the background during execution")
    side.add_argument("--exec-delay", type=float, default=None, metavar="SECS",
                      help="wait an amount of time before running checks")
    side.add_argument("--exec-port", type=int, default=None, metavar="PORT",
                      help="wait until a port accepts connections before running checks")
    side.add_argument("--exec-file", default=None, metavar="PATH",
                      help="wait until a file exists before running checks")
    side.add_argument("--exec-line", default=None, metavar="REGEX",
                      help="wait until the process prints a matching line")
    side.add_argument("--exec-kill-signal", default=None, metavar="SIGNAL",
                      help="signal sent to the process when finished (int, term, kill)")
    side.add_argument("--exec-timeout", type=float, default=None, metavar="SECS",
                      help="give up waiting for the process after this long")

    filters = parser.add_argument_group("filtering options")
    filters.add_argument("-t", "--tags", action="append", default=[], metavar="TAGS")
    filters.add_argument("--skip-tags", action="append", default=[], metavar="TAGS")
    filters.add_argument("-T", "--types", action="append", default=[], metavar="TYPES")
    filters.add_argument("--skip-types", action="append", default=[], metavar="TYPES")

    output = parser.add_argument_group("output options")
    output.add_argument("-s", "--successes", choices=tuple(Expand), default=None)
    output.add_argument("-f", "--failures", choices=tuple(Expand), default=None)
    output.add_argument("--summaries", choices=("hide", "show"), default=None)
    output.add_argument("-P", "--print", dest="print_mode", choices=tuple(PrintMode), default=None)
    output.add_argument("--color", "--colour", dest="color", choices=tuple(ColorMode), default=None)
    return parser


def parse_invocation(
    argv: Sequence[str],
    *,
    registry: CheckRegistry = DEFAULT_CHECK_REGISTRY,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> Invocation:
    """Parse flags and merge them with settings. Raises ``ArgumentError``."""

    parser = build_parser()
    args = parser.parse_args(list(argv))
    if not args.inputs:
        raise ArgumentError("no input documents given")

    if args.threads is not None and args.threads < 1:
        raise ArgumentError("--threads: the thread count must be at least 1")
    if args.delay is not None and args.delay < 0:
        raise ArgumentError("--delay: the delay must not be negative")
    kill_signal = (
        KillSignal.parse(args.exec_kill_signal) if args.exec_kill_signal is not None else None
    )

    settings = load_config(
        args.config_path,
        environ=environ,
        cwd=cwd,
        cli_overrides={
            "run.threads": args.threads,
            "run.delay": args.delay,
            "run.random_order": args.random_order,
            "run.directory": args.directory,
            "display.print": args.print_mode,
            "display.successes": args.successes,
            "display.failures": args.failures,
            "display.summaries": args.summaries,
            "display.color": args.color,
            "exec.kill_signal": kill_signal.value if kill_signal is not None else None,
            "exec.ready_timeout_seconds": args.exec_timeout,
        },
    )
    run_settings = settings["run"]
    display_settings = settings["display"]

    types = _split_lists(args.types)
    unknown = [name for name in types if not registry.contains(name)]
    if unknown:
        raise ArgumentError(f'Unknown check type "{unknown[0]}"')

    return Invocation(
        mode=args.mode or RunMode.RUN,
        inputs=tuple(args.inputs),
        check_filter=CheckFilter.from_lists(
            tags=_split_lists(args.tags),
            skip_tags=_split_lists(args.skip_tags),
            types=types,
            skip_types=_split_lists(args.skip_types),
        ),
        rewrites=Rewrites.parse(args.rewrite),
        global_options=GlobalOptions.parse(args.option),
        run_options=RunOptions(
            inputs=tuple(args.inputs),
            scheduler=SchedulerConfig(
                threads=int(run_settings["threads"]),
                random_order=bool(run_settings["random_order"]),
                continual=bool(args.continual),
                delay_seconds=float(run_settings["delay"]),
            ),
            directory=run_settings["directory"],
            analysis=bool(args.analysis),
            side_process=_side_process(args, settings["exec"]),
        ),
        print_mode=PrintMode(display_settings["print"]),
        display=DisplayOptions(
            successes=Expand(display_settings["successes"]),
            failures=Expand(display_settings["failures"]),
            summaries=display_settings["summaries"] == "show",
            color=ColorMode(display_settings["color"]),
        ),
    )


def _split_lists(values: Sequence[str]) -> list[str]:
    items: list[str] = []
    for value in values:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def _side_process(
    args: argparse.Namespace, exec_settings: Mapping[str, Any]
) -> SideProcessConfig | None:
    given = [name for name in _GATE_FLAGS if getattr(args, name) is not None]
    if len(given) > 1:
        flags = " and ".join("--" + name.replace("_", "-") for name in given)
        raise ArgumentError(f"{flags} cannot be used together")
    if args.exec_shell is None:
        if given:
            raise ArgumentError(f"--{given[0].replace('_', '-')} requires --exec")
        return None

    gate = ReadinessGate.immediate()
    if args.exec_delay is not None:
        gate = ReadinessGate.delay(args.exec_delay)
    elif args.exec_port is not None:
        gate = ReadinessGate.on_port(args.exec_port)
    elif args.exec_file is not None:
        gate = ReadinessGate.on_file(args.exec_file)
    elif args.exec_line is not None:
        gate = ReadinessGate.on_line(args.exec_line)

    return SideProcessConfig(
        shell=args.exec_shell,
        gate=gate,
        kill_signal=KillSignal(exec_settings["kill_signal"]),
        ready_timeout_seconds=float(exec_settings["ready_timeout_seconds"]),
        grace_seconds=float(exec_settings["grace_seconds"]),
    )


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    stdout: IO[str] | None = None,
    stdin: IO[str] | None = None,
    executor: CommandExecutor | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Parse argv, run the selected mode, and return the process exit code."""

    configure_logging(logging_config_from_env(environ))
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    if not raw_argv:
        build_parser().print_help(sys.stderr)
        return ExitCode.ARGUMENT_ERROR

    invocation = parse_invocation(raw_argv, environ=environ)
    out = stdout if stdout is not None else sys.stdout
    reporter = create_reporter(invocation.print_mode, options=invocation.display, stream=out)
    loader = DocumentLoader(
        check_filter=invocation.check_filter, rewrites=invocation.rewrites
    )

    match invocation.mode:
        case RunMode.SYNTAX_CHECK:
            return _cmd_syntax_check(invocation, loader, reporter, out, stdin)
        case RunMode.LIST_COMMANDS:
            return _cmd_list_commands(invocation, loader, reporter, out, stdin)
        case RunMode.LIST_CHECKS:
            return _cmd_list_checks(invocation, loader, reporter, out, stdin)
        case RunMode.LIST_TAGS:
            return _cmd_list_tags(invocation, reporter, out, stdin)
        case _:
            return _cmd_run(invocation, loader, reporter, stdin, executor)


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _cmd_run(
    invocation: Invocation,
    loader: DocumentLoader,
    reporter: Reporter,
    stdin: IO[str] | None,
    executor: CommandExecutor | None,
) -> int:
    session = RunSession(
        invocation.run_options,
        loader=loader,
        reporter=reporter,
        global_options=invocation.global_options,
        executor=executor,
        stdin=stdin,
    )
    outcome = asyncio.run(_run_interruptible(session))
    return exit_code_for(outcome)


async def _run_interruptible(session: RunSession) -> RunOutcome:
    loop = asyncio.get_running_loop()
    token: CancellationToken = session.cancel_token
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await session.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def exit_code_for(outcome: RunOutcome) -> ExitCode:
    if outcome.interrupted:
        return ExitCode.INTERRUPTED
    if outcome.documents_errored:
        return ExitCode.LOAD_ERROR
    if outcome.checks_failed:
        return ExitCode.CHECKS_FAILED
    return ExitCode.SUCCESS


def _cmd_syntax_check(
    invocation: Invocation,
    loader: DocumentLoader,
    reporter: Reporter,
    out: IO[str],
    stdin: IO[str] | None,
) -> int:
    errored = False
    for source in invocation.inputs:
        loaded = loader.load(source, stdin=stdin)
        if loaded.load_error is not None:
            reporter.load_error(source, loaded.load_error)
            errored = True
        elif loaded.read_errors:
            reporter.read_errors(loaded.read_errors)
            errored = True
        elif not loaded.specs:
            print(f"{_display_source(source)} contains no checks", file=out)
        else:
            print(f"{_display_source(source)} syntax OK", file=out)
    return ExitCode.LOAD_ERROR if errored else ExitCode.SUCCESS


def _cmd_list_commands(
    invocation: Invocation,
    loader: DocumentLoader,
    reporter: Reporter,
    out: IO[str],
    stdin: IO[str] | None,
) -> int:
    errored = False
    seen: dict[str, None] = {}
    for source in invocation.inputs:
        loaded = loader.load(source, stdin=stdin)
        if loaded.load_error is not None:
            reporter.load_error(source, loaded.load_error)
            errored = True
            continue
        if loaded.read_errors:
            reporter.read_errors(loaded.read_errors)
            errored = True
        for spec in loaded.specs:
            for command in loader.registry.build(spec).commands():
                seen.setdefault(command, None)
    for command in seen:
        print(command, file=out)
    return ExitCode.LOAD_ERROR if errored else ExitCode.SUCCESS


def _cmd_list_checks(
    invocation: Invocation,
    loader: DocumentLoader,
    reporter: Reporter,
    out: IO[str],
    stdin: IO[str] | None,
) -> int:
    errored = False
    for source in invocation.inputs:
        reporter.file_section(source)
        loaded = loader.load(source, stdin=stdin)
        if loaded.load_error is not None:
            reporter.load_error(source, loaded.load_error)
            errored = True
            continue
        if loaded.read_errors:
            reporter.read_errors(loaded.read_errors)
        for spec in loaded.specs:
            check = loader.registry.build(spec)
            print(f"[{spec.check_type}] {check.describe()}", file=out)
    return ExitCode.LOAD_ERROR if errored else ExitCode.SUCCESS


def _cmd_list_tags(
    invocation: Invocation,
    reporter: Reporter,
    out: IO[str],
    stdin: IO[str] | None,
) -> int:
    errored = False
    tags: set[str] = set()
    for source in invocation.inputs:
        try:
            document = read_document(source, stdin=stdin)
        except LoadError as exc:
            reporter.load_error(source, exc)
            errored = True
            continue
        for entry in document.entries:
            tags.update(entry.tags)

    if not tags:
        structlog.get_logger(__name__).warning("There are no tags to list!")
    for tag in sorted(tags):
        print(tag, file=out)
    return ExitCode.LOAD_ERROR if errored else ExitCode.SUCCESS


def _display_source(source: str) -> str:
    return "<stdin>" if source == STDIN_INPUT else source


__all__ = [
    "Invocation",
    "RunMode",
    "build_parser",
    "exit_code_for",
    "parse_invocation",
    "run_cli",
]
