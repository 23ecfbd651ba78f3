"""Output protocols rendered to a string buffer."""

from __future__ import annotations

import io
import json

import pytest

from specsheet.checks.base import CheckResult, CheckSpec, Step
from specsheet.engine.documents import ReadError
from specsheet.engine.results import RunSummary
from specsheet.errors import LoadError
from specsheet.ui.reporters import (
    AnsiReporter,
    ColorMode,
    DisplayOptions,
    DotsReporter,
    Expand,
    JsonLinesReporter,
    PrintMode,
    TapReporter,
    create_reporter,
    use_colours,
)


def _result(title: str, *steps: Step) -> CheckResult:
    return CheckResult(spec=CheckSpec("cmd", {}, name=title), description=title, steps=steps)


_PASS = _result("it works", Step.passed("command was executed"))
_FAIL = _result(
    "it breaks",
    Step.passed("command was executed"),
    Step.failed("stdout did not match the regex", ("stdout was:", "nope")),
)


def _summary(*results: CheckResult, read_errors: int = 0) -> RunSummary:
    return RunSummary(results=list(results), read_error_count=read_errors)


def _ansi(stream: io.StringIO, **options) -> AnsiReporter:
    return AnsiReporter(stream, options=DisplayOptions(**options), colours=False)


@pytest.mark.unit
def test_ansi_shows_successes_and_expands_failures() -> None:
    stream = io.StringIO()
    reporter = _ansi(stream)

    reporter.file_section("checks.toml")
    reporter.check_finished(_PASS)
    reporter.check_finished(_FAIL)
    reporter.round_finished(_summary(_PASS, _FAIL))

    assert stream.getvalue().splitlines() == [
        "checks.toml:",
        " ✔ it works",
        " ✘ it breaks",
        "   ✔ command was executed",
        "   ✘ stdout did not match the regex",
        "     stdout was:",
        "     nope",
        "   1/2 successful",
    ]


@pytest.mark.unit
def test_ansi_hides_and_summaries_off() -> None:
    stream = io.StringIO()
    reporter = _ansi(stream, successes=Expand.HIDE, failures=Expand.SHOW, summaries=False)

    reporter.check_finished(_PASS)
    reporter.check_finished(_FAIL)
    reporter.round_finished(_summary(_PASS, _FAIL))

    assert stream.getvalue().splitlines() == [" ✘ it breaks"]


@pytest.mark.unit
def test_ansi_reports_document_errors() -> None:
    stream = io.StringIO()
    reporter = _ansi(stream)

    reporter.load_error("x.toml", LoadError("x.toml", "No such file or directory"))
    reporter.read_errors([ReadError("cmd", "Parameter 'shell' is missing")])
    reporter.round_finished(_summary(_PASS, read_errors=1))

    assert stream.getvalue().splitlines() == [
        " ? load error: x.toml: No such file or directory",
        " ? [cmd] Parameter 'shell' is missing",
        "   1/1 successful, 1 errors",
    ]


@pytest.mark.unit
def test_ansi_colours_when_forced() -> None:
    stream = io.StringIO()
    AnsiReporter(stream, options=DisplayOptions(color=ColorMode.ALWAYS)).check_finished(_PASS)

    assert "\x1b[" in stream.getvalue()


@pytest.mark.unit
def test_colour_detection() -> None:
    stream = io.StringIO()

    assert use_colours(ColorMode.ALWAYS, stream, {"NO_COLOR": "1"})
    assert not use_colours(ColorMode.NEVER, stream, {})
    assert not use_colours(ColorMode.AUTO, stream, {})


@pytest.mark.unit
def test_dots() -> None:
    stream = io.StringIO()
    reporter = DotsReporter(stream)

    reporter.check_finished(_PASS)
    reporter.check_finished(_FAIL)
    reporter.read_errors([ReadError("cmd", "bad")])
    reporter.run_finished()

    assert stream.getvalue() == ".X?\n"


@pytest.mark.unit
def test_json_lines_records() -> None:
    stream = io.StringIO()
    reporter = JsonLinesReporter(stream)

    reporter.file_section("checks.toml")
    reporter.check_finished(_FAIL)
    reporter.read_errors([ReadError("fs", "Parameter 'path' is missing")])
    reporter.round_finished(_summary(_FAIL, read_errors=1))
    reporter.analysis(["", "Analysis:", "- Failures involving port '80' (×1, with 0 successes)"])

    records = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert records[0] == {"file": {"path": "checks.toml"}}
    assert records[1]["ran-check"]["passed"] is False
    assert records[1]["ran-check"]["stages"][1] == {
        "status": "fail",
        "message": "stdout did not match the regex",
    }
    assert records[2] == {"read-error": {"errors": ["[fs] Parameter 'path' is missing"]}}
    assert records[3] == {
        "stats": {"check-count": 1, "pass-count": 0, "fail-count": 1, "err-count": 1}
    }
    assert records[4] == {
        "analysis": {"correlations": ["Failures involving port '80' (×1, with 0 successes)"]}
    }


@pytest.mark.unit
def test_tap_plan_and_numbering_restart_each_round() -> None:
    stream = io.StringIO()
    reporter = TapReporter(stream)

    reporter.round_started(1, 2)
    reporter.check_finished(_PASS)
    reporter.check_finished(_FAIL)
    reporter.round_started(2, 1)
    reporter.check_finished(_PASS)

    assert stream.getvalue().splitlines() == [
        "1..2",
        "ok 1 - it works",
        "not ok 2 - it breaks",
        "#   ✘ stdout did not match the regex",
        "#     stdout was:",
        "#     nope",
        "1..1",
        "ok 1 - it works",
    ]


@pytest.mark.unit
def test_tap_announced_plan_numbers_across_sections() -> None:
    stream = io.StringIO()
    reporter = TapReporter(stream)

    reporter.run_started(3)
    reporter.file_section("a.toml")
    reporter.round_started(1, 2)
    reporter.check_finished(_PASS)
    reporter.check_finished(_PASS)
    reporter.file_section("b.toml")
    reporter.round_started(1, 1)
    reporter.check_finished(_PASS)

    assert stream.getvalue().splitlines() == [
        "1..3",
        "# a.toml",
        "ok 1 - it works",
        "ok 2 - it works",
        "# b.toml",
        "ok 3 - it works",
    ]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        (PrintMode.ANSI, AnsiReporter),
        ("dots", DotsReporter),
        ("json-lines", JsonLinesReporter),
        (PrintMode.TAP, TapReporter),
    ],
)
def test_create_reporter(mode, expected) -> None:
    assert isinstance(create_reporter(mode, stream=io.StringIO()), expected)
