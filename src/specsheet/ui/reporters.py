"""Output protocols: interactive terminal, dots, JSON lines and TAP.

Every reporter receives the same event stream from the run (file sections,
load and read errors, round boundaries, finished checks, analysis) and writes
to standard output. Diagnostics go through logging, never through here.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import IO, TYPE_CHECKING, Final

from rich.console import Console
from rich.text import Text

from specsheet.checks.base import StepStatus
from specsheet.constants import NO_COLOR_ENV_VAR

if TYPE_CHECKING:
    from specsheet.checks.base import CheckResult, Step
    from specsheet.engine.documents import ReadError
    from specsheet.engine.results import RunSummary
    from specsheet.errors import LoadError

_STEP_GLYPHS: Final[dict[StepStatus, str]] = {
    StepStatus.PASS: "✔",
    StepStatus.FAIL: "✘",
    StepStatus.ERROR: "?",
    StepStatus.SKIP: "-",
}
_STEP_STYLES: Final[dict[StepStatus, str]] = {
    StepStatus.PASS: "green",
    StepStatus.FAIL: "red",
    StepStatus.ERROR: "yellow",
    StepStatus.SKIP: "dim",
}


class PrintMode(StrEnum):
    ANSI = "ansi"
    DOTS = "dots"
    JSON_LINES = "json-lines"
    TAP = "tap"


class Expand(StrEnum):
    HIDE = "hide"
    SHOW = "show"
    EXPAND = "expand"


class ColorMode(StrEnum):
    ALWAYS = "always"
    AUTO = "auto"
    NEVER = "never"


@dataclass(frozen=True, slots=True)
class DisplayOptions:
    successes: Expand = Expand.SHOW
    failures: Expand = Expand.EXPAND
    summaries: bool = True
    color: ColorMode = ColorMode.AUTO


def use_colours(
    mode: ColorMode, stream: IO[str], environ: Mapping[str, str] | None = None
) -> bool:
    """``always`` wins; otherwise ``NO_COLOR`` or a non-terminal disables colour."""

    if mode is ColorMode.ALWAYS:
        return True
    if mode is ColorMode.NEVER:
        return False
    env = os.environ if environ is None else environ
    if env.get(NO_COLOR_ENV_VAR, ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class Reporter:
    """Base reporter: every hook is a no-op."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream if stream is not None else sys.stdout

    def write_line(self, line: str = "") -> None:
        self.stream.write(line + "\n")
        self.stream.flush()

    def run_started(self, check_count: int) -> None:
        pass

    def file_section(self, source: str) -> None:
        pass

    def load_error(self, source: str, error: LoadError) -> None:
        pass

    def read_errors(self, errors: Sequence[ReadError]) -> None:
        pass

    def round_started(self, round_number: int, check_count: int) -> None:
        pass

    def check_finished(self, result: CheckResult) -> None:
        pass

    def round_finished(self, summary: RunSummary) -> None:
        pass

    def analysis(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.write_line(line)

    def run_finished(self) -> None:
        pass


class AnsiReporter(Reporter):
    """Interactive output: a glyph per check, optionally its steps, then a summary."""

    def __init__(
        self,
        stream: IO[str] | None = None,
        *,
        options: DisplayOptions | None = None,
        colours: bool | None = None,
    ) -> None:
        super().__init__(stream)
        self.options = options if options is not None else DisplayOptions()
        enabled = colours if colours is not None else use_colours(self.options.color, self.stream)
        self.console = Console(
            file=self.stream,
            color_system="standard" if enabled else None,
            force_terminal=enabled,
            highlight=False,
            markup=False,
            emoji=False,
            soft_wrap=True,
        )

    def _print(self, *parts: str | tuple[str, str]) -> None:
        self.console.print(Text.assemble(*parts))

    def file_section(self, source: str) -> None:
        self._print((f"{source}:", "underline"))

    def load_error(self, source: str, error: LoadError) -> None:
        self._print(" ", ("?", "yellow"), " ", ("load error:", "bold red"), f" {error}")

    def read_errors(self, errors: Sequence[ReadError]) -> None:
        for error in errors:
            tag = f"[{error.check_type}]"
            self._print(" ", ("?", "yellow"), " ", (tag, "yellow"), f" {error.message}")

    def check_finished(self, result: CheckResult) -> None:
        level = self.options.successes if result.passed else self.options.failures
        if level is Expand.HIDE:
            return
        if result.passed:
            self._print(" ", ("✔", "bold green"), f" {result.title}")
        else:
            self._print(" ", ("✘", "bold red"), f" {result.title}")
        if level is Expand.EXPAND:
            for step in result.steps:
                self._print_step(step)

    def _print_step(self, step: Step) -> None:
        glyph = _STEP_GLYPHS[step.status]
        self._print("   ", (glyph, _STEP_STYLES[step.status]), f" {step.message}")
        for line in step.details:
            self._print(f"     {line}")

    def round_finished(self, summary: RunSummary) -> None:
        if not self.options.summaries:
            return
        stats = summary.stats
        total = stats.pass_count + stats.fail_count
        text = f"{stats.pass_count}/{total} successful"
        if stats.err_count:
            text += f", {stats.err_count} errors"
        if total == 0:
            style = "bold yellow"
        elif stats.fail_count or stats.err_count:
            style = "bold red"
        else:
            style = ""
        self._print("   ", (text, style))


class DotsReporter(Reporter):
    """One character per check: ``.`` passed, ``X`` failed, ``?`` document error."""

    def _dot(self, char: str) -> None:
        self.stream.write(char)
        self.stream.flush()

    def load_error(self, source: str, error: LoadError) -> None:
        self._dot("?")

    def read_errors(self, errors: Sequence[ReadError]) -> None:
        if errors:
            self._dot("?")

    def check_finished(self, result: CheckResult) -> None:
        self._dot("." if result.passed else "X")

    def analysis(self, lines: Sequence[str]) -> None:
        self.write_line()
        super().analysis(lines)

    def run_finished(self) -> None:
        self.write_line()


class JsonLinesReporter(Reporter):
    """One self-contained JSON object per line."""

    def _emit(self, payload: dict[str, object]) -> None:
        self.write_line(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))

    def file_section(self, source: str) -> None:
        self._emit({"file": {"path": source}})

    def load_error(self, source: str, error: LoadError) -> None:
        self._emit({"load-error": {"path": source, "error": error.message}})

    def read_errors(self, errors: Sequence[ReadError]) -> None:
        self._emit({"read-error": {"errors": [str(error) for error in errors]}})

    def check_finished(self, result: CheckResult) -> None:
        self._emit({"ran-check": result.to_dict()})

    def round_finished(self, summary: RunSummary) -> None:
        self._emit({"stats": summary.stats.to_dict()})

    def analysis(self, lines: Sequence[str]) -> None:
        correlations = [line for line in lines if line.startswith("- ")]
        self._emit({"analysis": {"correlations": [line[2:] for line in correlations]}})


class TapReporter(Reporter):
    """Test Anything Protocol output.

    A single run announces one plan for every input up front and numbers its
    checks across all of them. Continual runs never announce a total, so each
    round prints its own plan and numbering restarts.
    """

    def __init__(self, stream: IO[str] | None = None) -> None:
        super().__init__(stream)
        self._count = 0
        self._planned = False

    def run_started(self, check_count: int) -> None:
        self._planned = True
        self._count = 0
        self.write_line(f"1..{check_count}")

    def file_section(self, source: str) -> None:
        self.write_line(f"# {source}")

    def load_error(self, source: str, error: LoadError) -> None:
        self.write_line(f"# load error: {error}")

    def read_errors(self, errors: Sequence[ReadError]) -> None:
        for error in errors:
            self.write_line(f"# read error: {error}")

    def round_started(self, round_number: int, check_count: int) -> None:
        if self._planned:
            return
        self._count = 0
        self.write_line(f"1..{check_count}")

    def check_finished(self, result: CheckResult) -> None:
        self._count += 1
        status = "ok" if result.passed else "not ok"
        self.write_line(f"{status} {self._count} - {result.title}")
        if result.passed:
            return
        for step in result.steps:
            if step.is_problem:
                self.write_line(f"#   {_STEP_GLYPHS[step.status]} {step.message}")
                for line in step.details:
                    self.write_line(f"#     {line}")

    def analysis(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.write_line(f"# {line}" if line else "#")


def create_reporter(
    mode: PrintMode | str,
    *,
    options: DisplayOptions | None = None,
    stream: IO[str] | None = None,
) -> Reporter:
    match PrintMode(mode):
        case PrintMode.DOTS:
            return DotsReporter(stream)
        case PrintMode.JSON_LINES:
            return JsonLinesReporter(stream)
        case PrintMode.TAP:
            return TapReporter(stream)
        case _:
            return AnsiReporter(stream, options=options)


__all__ = [
    "AnsiReporter",
    "ColorMode",
    "DisplayOptions",
    "DotsReporter",
    "Expand",
    "JsonLinesReporter",
    "PrintMode",
    "Reporter",
    "TapReporter",
    "create_reporter",
    "use_colours",
]
