"""Global options, the shell runner and the shared lookup cache."""

from __future__ import annotations

import asyncio

import pytest

from specsheet.checks.execution import (
    CheckContext,
    CommandCache,
    CommandSpec,
    GlobalOptions,
    LocalSubprocessExecutor,
    ShellRunner,
)
from specsheet.errors import ArgumentError


@pytest.mark.unit
def test_global_options_parse_pairs() -> None:
    options = GlobalOptions.parse(["cmd.shell=bash", "cmd.target.curl=mycurl", "empty="])

    assert options.shell == "bash"
    assert options.targets == {"curl": "mycurl"}
    assert options.get("empty") == ""
    assert "cmd.shell" in options


@pytest.mark.unit
@pytest.mark.parametrize("pair", ["novalue", "=value"])
def test_global_options_reject_malformed_pairs(pair: str) -> None:
    with pytest.raises(ArgumentError, match="expected KEY=VALUE"):
        GlobalOptions.parse([pair])


@pytest.mark.unit
def test_global_options_reject_repeated_keys() -> None:
    with pytest.raises(ArgumentError, match="more than once"):
        GlobalOptions.parse(["a=1", "a=2"])


@pytest.mark.unit
def test_shell_runner_orders_target_functions() -> None:
    runner = ShellRunner("sh", {"wget": "w2", "curl": "c2"})

    assert runner.script("x") == 'curl () { c2 "$@"; }; wget () { w2 "$@"; }; x'
    assert runner.argv("x")[:2] == ("sh", "-c")


@pytest.mark.unit
async def test_cache_runs_each_lookup_once(fake_executor) -> None:
    fake_executor.respond("apt list --installed", stdout="vim/stable 2:9.0 amd64\n")
    cache = CommandCache(fake_executor)
    argv = ("apt", "list", "--installed")

    results = await asyncio.gather(*(cache.lookup(argv) for _ in range(5)))

    assert {result.stdout for result in results} == {"vim/stable 2:9.0 amd64\n"}
    assert fake_executor.commands_run() == ["apt list --installed"]

    cache.clear()
    await cache.lookup(argv)
    assert len(fake_executor.calls) == 2


@pytest.mark.unit
async def test_cache_option_replaces_the_command(fake_executor) -> None:
    cache = CommandCache(fake_executor, GlobalOptions({"ufw.output": "canned"}))

    result = await cache.lookup(("ufw", "status", "verbose"), option_key="ufw.output")

    assert result.succeeded
    assert result.stdout == "canned"
    assert fake_executor.calls == []


@pytest.mark.unit
def test_context_resolves_relative_paths(tmp_path, fake_executor) -> None:
    context = CheckContext(executor=fake_executor, working_directory=tmp_path)

    assert context.resolve_path("a/b") == tmp_path / "a" / "b"
    assert context.resolve_path("/etc/hosts").is_absolute()
    assert context.cwd == str(tmp_path)


@pytest.mark.unit
def test_context_rejects_non_executors() -> None:
    with pytest.raises(ValueError, match="CommandExecutor"):
        CheckContext(executor=object())  # type: ignore[arg-type]


@pytest.mark.unit
def test_command_spec_requires_argv() -> None:
    with pytest.raises(ValueError, match="non-empty"):
        CommandSpec(argv=())


@pytest.mark.unit
async def test_local_executor_captures_streams(tmp_path) -> None:
    executor = LocalSubprocessExecutor()

    result = await executor.run(
        CommandSpec(argv=("sh", "-c", "echo out; echo err >&2; exit 3"), cwd=str(tmp_path))
    )

    assert result.ran
    assert result.exit_code == 3
    assert result.stdout_lines == ["out"]
    assert result.stderr == "err\n"


@pytest.mark.unit
async def test_local_executor_reports_spawn_failure() -> None:
    result = await LocalSubprocessExecutor().run(CommandSpec(argv=("/nonexistent/binary",)))

    assert not result.ran
    assert result.error is not None


@pytest.mark.unit
async def test_local_executor_times_out() -> None:
    executor = LocalSubprocessExecutor(default_timeout_seconds=0.2)

    result = await executor.run(CommandSpec(argv=("sh", "-c", "sleep 5")))

    assert result.timed_out
    assert not result.succeeded
