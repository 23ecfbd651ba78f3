"""UI package exports for the command line and the output reporters."""

from specsheet.ui.cli import build_parser, parse_invocation, run_cli
from specsheet.ui.reporters import (
    AnsiReporter,
    DisplayOptions,
    DotsReporter,
    JsonLinesReporter,
    Reporter,
    TapReporter,
    create_reporter,
)

__all__ = [
    "AnsiReporter",
    "DisplayOptions",
    "DotsReporter",
    "JsonLinesReporter",
    "Reporter",
    "TapReporter",
    "build_parser",
    "create_reporter",
    "parse_invocation",
    "run_cli",
]
