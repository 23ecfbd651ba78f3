"""
specsheet — CLI run contracts

Purpose
- Run real check documents through ``run_cli`` and ``python -m specsheet``.
- Verify exit codes, reporter output, and side-process handling end to end.
"""

from __future__ import annotations

import io
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from specsheet.main import ExitCode
from specsheet.ui.cli import run_cli

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_module(
    cwd: Path, *args: str, stdin: str | None = None
) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    env["PYTHONPATH"] = (
        str(SRC_PATH) if not existing_pythonpath else f"{SRC_PATH}:{existing_pythonpath}"
    )
    env.pop("SPECSHEET_DEBUG", None)
    return subprocess.run(
        [sys.executable, "-m", "specsheet", *args],
        cwd=cwd,
        input=stdin,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=60,
    )


def _write(path: Path, contents: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")
    return path


@pytest.mark.integration
def test_single_passing_command(tmp_path: Path) -> None:
    document = _write(
        tmp_path / "hi.toml", '[[cmd]]\nshell = "echo hi"\nstdout = { string = "hi" }\n'
    )
    out = io.StringIO()

    code = run_cli(["--color", "never", str(document)], stdout=out, environ={})

    assert code == ExitCode.SUCCESS
    lines = out.getvalue().splitlines()
    assert lines[0] == f"{document}:"
    assert lines[1] == " ✔ Command 'echo hi' executes with stdout containing 'hi'"
    assert lines[-1] == "   1/1 successful"


@pytest.mark.integration
def test_tap_output_for_mixed_results(tmp_path: Path) -> None:
    document = _write(
        tmp_path / "mixed.toml",
        """
[[cmd]]
name = "true succeeds"
shell = "true"
status = 0

[[cmd]]
name = "false succeeds"
shell = "false"
status = 0

[[fs]]
name = "document exists"
path = "mixed.toml"
""",
    )
    out = io.StringIO()

    code = run_cli(
        ["-P", "tap", "-j", "1", "--directory", "check", str(document)], stdout=out, environ={}
    )

    assert code == ExitCode.CHECKS_FAILED
    assert out.getvalue().splitlines() == [
        "1..3",
        f"# {document}",
        "ok 1 - true succeeds",
        "not ok 2 - false succeeds",
        "#   ✘ command exited with status code '1'",
        "ok 3 - document exists",
    ]


@pytest.mark.integration
def test_tap_output_spans_several_documents(tmp_path: Path) -> None:
    first = _write(
        tmp_path / "a.toml", '[[cmd]]\nshell = "true"\n\n[[cmd]]\nshell = "false"\nstatus = 0\n'
    )
    second = _write(tmp_path / "b.toml", '[[cmd]]\nshell = "true"\n')
    out = io.StringIO()

    code = run_cli(["-P", "tap", "-j", "1", str(first), str(second)], stdout=out, environ={})

    assert code == ExitCode.CHECKS_FAILED
    assert out.getvalue().splitlines() == [
        "1..3",
        f"# {first}",
        "ok 1 - Command 'true' executes",
        "not ok 2 - Command 'false' returns '0'",
        "#   ✘ command exited with status code '1'",
        f"# {second}",
        "ok 3 - Command 'true' executes",
    ]


@pytest.mark.integration
def test_json_lines_with_analysis(tmp_path: Path) -> None:
    document = _write(
        tmp_path / "missing.toml",
        '[[fs]]\npath = "/nonexistent/specsheet"\n\n'
        '[[fs]]\npath = "/nonexistent/specsheet"\nkind = "directory"\n',
    )
    out = io.StringIO()

    code = run_cli(["-P", "json-lines", "-z", str(document)], stdout=out, environ={})

    assert code == ExitCode.CHECKS_FAILED
    records = [json.loads(line) for line in out.getvalue().splitlines()]
    assert [next(iter(record)) for record in records] == [
        "file",
        "ran-check",
        "ran-check",
        "stats",
        "analysis",
    ]
    assert records[-1]["analysis"]["correlations"] == [
        "Failures involving path '/nonexistent/specsheet' (×2, with 0 successes)"
    ]


@pytest.mark.integration
def test_side_process_serves_the_checks(tmp_path: Path) -> None:
    document = _write(tmp_path / "side.toml", '[[fs]]\npath = "marker"\n')
    marker = tmp_path / "marker"
    out = io.StringIO()

    code = run_cli(
        [
            "-P", "tap",
            "--directory", "check",
            "-x", f"touch '{marker}'; echo ready; sleep 30",
            "--exec-line", "^ready$",
            str(document),
        ],
        stdout=out,
        environ={},
    )

    assert code == ExitCode.SUCCESS
    assert "ok 1 - File 'marker' exists" in out.getvalue().splitlines()


@pytest.mark.integration
def test_side_process_that_never_gets_ready(tmp_path: Path, capsys) -> None:
    document = _write(tmp_path / "c.toml", '[[cmd]]\nshell = "true"\n')

    from specsheet.main import cli_entrypoint

    code = cli_entrypoint(
        ["-x", "exit 0", "--exec-delay", "5", "-P", "dots", str(document)]
    )

    assert code == ExitCode.CHECKS_FAILED
    assert "before it was ready" in capsys.readouterr().err


@pytest.mark.integration
def test_module_entrypoint_reads_stdin(tmp_path: Path) -> None:
    completed = _run_module(
        tmp_path, "-P", "dots", "-", stdin='[[cmd]]\nshell = "echo hi"\nstatus = 0\n'
    )

    assert completed.returncode == 0, completed.stderr
    assert completed.stdout == ".\n"


@pytest.mark.integration
def test_module_entrypoint_exit_codes(tmp_path: Path) -> None:
    _write(tmp_path / "broken.toml", "[[cmd]\n")

    assert _run_module(tmp_path, "broken.toml").returncode == ExitCode.LOAD_ERROR
    assert _run_module(tmp_path).returncode == ExitCode.ARGUMENT_ERROR
    assert _run_module(tmp_path, "--threads", "x", "a.toml").returncode == (
        ExitCode.ARGUMENT_ERROR
    )
