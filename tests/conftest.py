"""Shared fixtures: quiet diagnostics and a scripted command executor."""

from __future__ import annotations

import io
from collections.abc import Iterator, Mapping
from pathlib import Path

import pytest

from specsheet.checks.execution import CommandResult, CommandSpec
from specsheet.observability.logging import LoggingConfig, configure_logging, reset_logging


class FakeExecutor:
    """Answers commands from a table instead of spawning processes.

    A response is keyed by the command line as written: the shell script for
    ``cmd``/``tap`` checks, or the space-joined argv for lookups.
    """

    def __init__(self) -> None:
        self.calls: list[CommandSpec] = []
        self._responses: dict[str, tuple[int | None, str, str, str | None]] = {}

    def respond(
        self,
        command: str,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = 0,
        error: str | None = None,
    ) -> None:
        self._responses[command] = (exit_code, stdout, stderr, error)

    def commands_run(self) -> list[str]:
        return [_key_for(spec.argv) for spec in self.calls]

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        key = _key_for(spec.argv)
        exit_code, stdout, stderr, error = self._responses.get(
            key, (127, "", f"{key}: command not found\n", None)
        )
        return CommandResult(
            argv=spec.argv, exit_code=exit_code, stdout=stdout, stderr=stderr, error=error
        )


def _key_for(argv: tuple[str, ...]) -> str:
    if len(argv) == 3 and argv[1] == "-c":
        return argv[2]
    return " ".join(argv)


@pytest.fixture(autouse=True)
def _quiet_logging() -> Iterator[io.StringIO]:
    stream = io.StringIO()
    configure_logging(LoggingConfig(level="DEBUG", stream=stream))
    yield stream
    reset_logging()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def clean_env() -> Mapping[str, str]:
    return {}


@pytest.fixture
def write_document(tmp_path: Path):
    def write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return write
