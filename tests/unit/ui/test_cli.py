"""Flag parsing, mode handlers and exit-code routing."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from specsheet.engine.supervisor import GateKind, KillSignal
from specsheet.errors import ArgumentError
from specsheet.main import ExitCode, cli_entrypoint
from specsheet.engine.session import RunOutcome
from specsheet.ui.cli import RunMode, exit_code_for, parse_invocation, run_cli
from specsheet.ui.reporters import Expand, PrintMode

_DOCUMENT = """
[[cmd]]
name = "greeting"
tags = ["smoke"]
shell = "echo hi"

[[cmd]]
shell = "echo hi"
tags = ["slow"]

[[apt]]
package = "vim"
"""


@pytest.fixture
def parse(tmp_path: Path):
    def _parse(*argv: str):
        return parse_invocation(list(argv), environ={}, cwd=tmp_path)

    return _parse


@pytest.mark.unit
def test_defaults(parse) -> None:
    invocation = parse("checks.toml")

    assert invocation.mode == RunMode.RUN
    assert invocation.inputs == ("checks.toml",)
    assert invocation.print_mode is PrintMode.ANSI
    assert invocation.display.failures is Expand.EXPAND
    assert invocation.run_options.side_process is None
    assert invocation.check_filter.is_empty


@pytest.mark.unit
def test_flags_reach_their_settings(parse) -> None:
    invocation = parse(
        "-j", "3", "--random-order", "--delay", "0.5", "--directory", "check",
        "-t", "smoke,fast", "-t", "db", "--skip-types", "apt",
        "-P", "tap", "-s", "hide", "-O", "cmd.shell=bash", "-R", "A->B",
        "-z", "a.toml", "b.toml",
    )

    scheduler = invocation.run_options.scheduler
    assert (scheduler.threads, scheduler.random_order, scheduler.delay_seconds) == (3, True, 0.5)
    assert invocation.run_options.directory == "check"
    assert invocation.run_options.analysis
    assert invocation.check_filter.tags == frozenset({"smoke", "fast", "db"})
    assert invocation.check_filter.skip_types == frozenset({"apt"})
    assert invocation.print_mode is PrintMode.TAP
    assert invocation.display.successes is Expand.HIDE
    assert invocation.global_options.shell == "bash"
    assert invocation.rewrites.rewrite("A") == "B"
    assert invocation.inputs == ("a.toml", "b.toml")


@pytest.mark.unit
def test_side_process_flags(parse) -> None:
    invocation = parse(
        "-x", "./server", "--exec-port", "8080", "--exec-kill-signal", "kill",
        "--exec-timeout", "2", "checks.toml",
    )

    side = invocation.run_options.side_process
    assert side is not None
    assert side.shell == "./server"
    assert side.gate.kind is GateKind.PORT
    assert side.kill_signal is KillSignal.KILL
    assert side.ready_timeout_seconds == 2.0


@pytest.mark.unit
@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (
            ("-x", "srv", "--exec-port", "1", "--exec-file", "f", "c.toml"),
            "cannot be used together",
        ),
        (("--exec-line", "up", "c.toml"), "--exec-line requires --exec"),
        (("-T", "frobnicate", "c.toml"), 'Unknown check type "frobnicate"'),
        (("-O", "novalue", "c.toml"), "expected KEY=VALUE"),
        (("-R", "nothing", "c.toml"), "expected THIS->THAT"),
        (("-j", "0", "c.toml"), "at least 1"),
        (("--print", "xml", "c.toml"), "invalid choice"),
        (("-c", "-l", "c.toml"), "not allowed with"),
        ((), "no input documents"),
    ],
)
def test_argument_errors(parse, argv: tuple[str, ...], message: str) -> None:
    with pytest.raises(ArgumentError, match=message):
        parse(*argv)


@pytest.mark.unit
def test_entrypoint_maps_argument_errors_to_exit_3(capsys) -> None:
    assert cli_entrypoint(["--exec-port", "80", "c.toml"]) == ExitCode.ARGUMENT_ERROR
    assert "--exec-port requires --exec" in capsys.readouterr().err


@pytest.mark.unit
def test_no_arguments_prints_help_and_exits_3(capsys) -> None:
    assert run_cli([], environ={}) == ExitCode.ARGUMENT_ERROR
    assert "usage: specsheet" in capsys.readouterr().err


@pytest.mark.unit
def test_version_exits_cleanly(capsys) -> None:
    assert cli_entrypoint(["--version"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.startswith("specsheet ")


@pytest.mark.unit
def test_syntax_check(write_document, tmp_path: Path) -> None:
    good = write_document("good.toml", _DOCUMENT)
    empty = write_document("empty.toml", "")
    out = io.StringIO()

    code = run_cli(["-c", str(good), str(empty)], stdout=out, environ={})

    assert code == ExitCode.SUCCESS
    assert out.getvalue().splitlines() == [
        f"{good} syntax OK",
        f"{empty} contains no checks",
    ]


@pytest.mark.unit
def test_syntax_check_reports_errors(write_document) -> None:
    bad = write_document("bad.toml", '[[cmd]]\nshell = ""\n')
    out = io.StringIO()

    code = run_cli(["-c", "-P", "tap", str(bad)], stdout=out, environ={})

    assert code == ExitCode.LOAD_ERROR
    assert out.getvalue().splitlines() == [
        "# read error: [cmd] Parameter 'shell' value '' is invalid (it must not be empty)"
    ]


@pytest.mark.unit
def test_list_commands_is_deduplicated(write_document, fake_executor) -> None:
    path = write_document("checks.toml", _DOCUMENT)
    out = io.StringIO()

    code = run_cli(["-C", str(path)], stdout=out, environ={}, executor=fake_executor)

    assert code == ExitCode.SUCCESS
    assert out.getvalue().splitlines() == ["echo hi", "apt list --installed"]
    assert fake_executor.calls == []


@pytest.mark.unit
def test_list_checks_honours_filters(write_document) -> None:
    path = write_document("checks.toml", _DOCUMENT)
    out = io.StringIO()

    code = run_cli(["-l", "--skip-tags", "slow", str(path)], stdout=out, environ={})

    assert code == ExitCode.SUCCESS
    assert out.getvalue().splitlines() == [
        f"{path}:",
        "[cmd] Command 'echo hi' executes",
        "[apt] Package 'vim' is installed",
    ]


@pytest.mark.unit
def test_list_tags_sorted_and_unique(write_document) -> None:
    path = write_document("checks.toml", _DOCUMENT)
    out = io.StringIO()

    assert run_cli(["--list-tags", str(path)], stdout=out, environ={}) == ExitCode.SUCCESS
    assert out.getvalue().splitlines() == ["slow", "smoke"]


@pytest.mark.unit
def test_list_tags_warns_when_there_are_none(write_document, capsys) -> None:
    path = write_document("plain.toml", '[[cmd]]\nshell = "true"\n')
    out = io.StringIO()

    assert run_cli(["--list-tags", str(path)], stdout=out, environ={}) == ExitCode.SUCCESS
    assert out.getvalue() == ""
    assert "There are no tags to list!" in capsys.readouterr().err


@pytest.mark.unit
def test_run_exit_codes(write_document, fake_executor, tmp_path: Path) -> None:
    fake_executor.respond("echo hi", stdout="hi\n")
    passing = write_document("pass.toml", '[[cmd]]\nshell = "echo hi"\nstatus = 0\n')
    failing = write_document("fail.toml", '[[cmd]]\nshell = "echo hi"\nstatus = 1\n')

    def run(*argv: str) -> int:
        return run_cli(
            ["-P", "dots", *argv], stdout=io.StringIO(), environ={}, executor=fake_executor
        )

    assert run(str(passing)) == ExitCode.SUCCESS
    assert run(str(failing)) == ExitCode.CHECKS_FAILED
    assert run(str(passing), str(tmp_path / "absent.toml")) == ExitCode.LOAD_ERROR
    assert run(str(failing), str(tmp_path / "absent.toml")) == ExitCode.LOAD_ERROR


@pytest.mark.unit
def test_run_reads_standard_input(fake_executor) -> None:
    fake_executor.respond("echo hi", stdout="hi\n")
    out = io.StringIO()

    code = run_cli(
        ["-P", "tap", "-"],
        stdout=out,
        stdin=io.StringIO('[[cmd]]\nshell = "echo hi"\n'),
        environ={},
        executor=fake_executor,
    )

    assert code == ExitCode.SUCCESS
    assert out.getvalue().splitlines() == ["1..1", "ok 1 - Command 'echo hi' executes"]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("outcome", "expected"),
    [
        (RunOutcome(), ExitCode.SUCCESS),
        (RunOutcome(checks_failed=True), ExitCode.CHECKS_FAILED),
        (RunOutcome(checks_failed=True, documents_errored=True), ExitCode.LOAD_ERROR),
        (RunOutcome(documents_errored=True, interrupted=True), ExitCode.INTERRUPTED),
    ],
)
def test_outcomes_map_onto_the_process_exit_codes(outcome, expected) -> None:
    code = exit_code_for(outcome)

    assert code is expected
    assert isinstance(code, ExitCode)
