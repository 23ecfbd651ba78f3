"""Subprocess execution and the per-run context handed to every probe."""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from collections.abc import Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from specsheet.constants import DEFAULT_SHELL
from specsheet.errors import ArgumentError

if TYPE_CHECKING:
    import httpx

_SHELL_OPTION: Final[str] = "cmd.shell"
_TARGET_PREFIX: Final[str] = "cmd.target."


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """One external command invocation."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not self.argv or not all(isinstance(arg, str) for arg in self.argv):
            raise ValueError("CommandSpec.argv: must be a non-empty tuple of strings")
        object.__setattr__(self, "argv", tuple(self.argv))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def display(self) -> str:
        return shlex.join(self.argv)

    def build_env(self) -> dict[str, str] | None:
        if not self.env:
            return None
        env = dict(os.environ)
        env.update(self.env)
        return env


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one command."""

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int = 0
    timed_out: bool = False
    error: str | None = None

    @property
    def ran(self) -> bool:
        """True when the process was spawned and exited on its own."""

        return self.error is None and not self.timed_out and self.exit_code is not None

    @property
    def succeeded(self) -> bool:
        return self.ran and self.exit_code == 0

    @property
    def stdout_lines(self) -> list[str]:
        return self.stdout.splitlines()


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface for probes."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Runs commands with ``asyncio`` subprocesses, capturing both streams."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )
        self._logger.debug("command_spawning", argv=list(spec.argv), cwd=spec.cwd)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._logger.debug("command_spawn_failed", argv=list(spec.argv), error=str(exc))
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                timeout_seconds=timeout,
            )
        except _CommandTimeoutError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                stdout=_normalize_output_text(exc.stdout),
                stderr=_normalize_output_text(exc.stderr),
                duration_ms=_elapsed_ms(started_ns),
                timed_out=True,
                error=f"command timed out after {timeout:.3f}s",
            )

        result = CommandResult(
            argv=spec.argv,
            exit_code=process.returncode,
            stdout=_normalize_output_text(stdout_bytes),
            stderr=_normalize_output_text(stderr_bytes),
            duration_ms=_elapsed_ms(started_ns),
        )
        self._logger.debug(
            "command_finished",
            argv=list(spec.argv),
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )
        return result


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """``KEY=VALUE`` settings given with ``-O``, shared by every check."""

    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def parse(cls, pairs: Iterable[str]) -> GlobalOptions:
        values: dict[str, str] = {}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            key = key.strip()
            if not sep or not key:
                raise ArgumentError(f"Invalid option {pair!r} (expected KEY=VALUE)")
            if key in values:
                raise ArgumentError(f"Option {key!r} given more than once")
            values[key] = value
        return cls(values)

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    @property
    def shell(self) -> str:
        return self.values.get(_SHELL_OPTION) or DEFAULT_SHELL

    @property
    def targets(self) -> dict[str, str]:
        return {
            key[len(_TARGET_PREFIX):]: value
            for key, value in self.values.items()
            if key.startswith(_TARGET_PREFIX) and len(key) > len(_TARGET_PREFIX)
        }


class ShellRunner:
    """Turns a shell command line into argv, with ``cmd.target.*`` functions first.

    ``-O cmd.target.curl=mycurl`` makes every command run as if preceded by
    ``curl () { mycurl "$@"; }; ``.
    """

    def __init__(
        self, shell: str = DEFAULT_SHELL, targets: Mapping[str, str] | None = None
    ) -> None:
        self.shell = shell
        self.targets = dict(targets or {})

    @classmethod
    def from_options(cls, options: GlobalOptions) -> ShellRunner:
        return cls(options.shell, options.targets)

    def script(self, command: str) -> str:
        prelude = "".join(
            f'{name} () {{ {value} "$@"; }}; ' for name, value in sorted(self.targets.items())
        )
        return prelude + command

    def argv(self, command: str) -> tuple[str, ...]:
        return (self.shell, "-c", self.script(command))


class CommandCache:
    """Runs each distinct lookup command at most once per run.

    Package and service checks all consult the same listing (``apt list
    --installed``, ``brew tap`` ...). The first caller runs it; concurrent
    callers wait on the same lock and reuse the result. A global option
    named by ``option_key`` replaces the command's output entirely and is
    treated as a successful run.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        options: GlobalOptions | None = None,
        *,
        cwd: str | None = None,
    ) -> None:
        self._executor = executor
        self._options = options if options is not None else GlobalOptions()
        self._cwd = cwd
        self._results: dict[tuple[str, ...], CommandResult] = {}
        self._locks: dict[tuple[str, ...], asyncio.Lock] = {}

    async def lookup(
        self, argv: tuple[str, ...], *, option_key: str | None = None
    ) -> CommandResult:
        if option_key is not None:
            predetermined = self._options.get(option_key)
            if predetermined is not None:
                return CommandResult(argv=argv, exit_code=0, stdout=predetermined, stderr="")

        lock = self._locks.setdefault(argv, asyncio.Lock())
        async with lock:
            cached = self._results.get(argv)
            if cached is not None:
                return cached
            result = await self._executor.run(CommandSpec(argv=argv, cwd=self._cwd))
            self._results[argv] = result
            return result

    def clear(self) -> None:
        self._results.clear()


@dataclass(slots=True)
class CheckContext:
    """Everything a probe may use to observe the outside world."""

    executor: CommandExecutor
    options: GlobalOptions = field(default_factory=GlobalOptions)
    shell: ShellRunner = field(default_factory=ShellRunner)
    cache: CommandCache | None = None
    working_directory: Path | None = None
    http_transport: httpx.AsyncBaseTransport | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.executor, CommandExecutor):
            raise ValueError("CheckContext.executor: must implement CommandExecutor")
        if self.cache is None:
            self.cache = CommandCache(self.executor, self.options, cwd=self.cwd)

    @classmethod
    def create(
        cls,
        options: GlobalOptions,
        *,
        executor: CommandExecutor | None = None,
        working_directory: Path | None = None,
    ) -> CheckContext:
        return cls(
            executor=executor if executor is not None else LocalSubprocessExecutor(),
            options=options,
            shell=ShellRunner.from_options(options),
            working_directory=working_directory,
        )

    @property
    def cwd(self) -> str | None:
        return str(self.working_directory) if self.working_directory is not None else None

    def resolve_path(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        if not path.is_absolute() and self.working_directory is not None:
            path = self.working_directory / path
        return path

    async def run_shell(
        self, command: str, env: Mapping[str, str] | None = None
    ) -> CommandResult:
        spec = CommandSpec(argv=self.shell.argv(command), cwd=self.cwd, env=env or {})
        return await self.executor.run(spec)

    async def lookup(
        self, argv: tuple[str, ...], *, option_key: str | None = None
    ) -> CommandResult:
        assert self.cache is not None
        return await self.cache.lookup(argv, option_key=option_key)


class _CommandTimeoutError(Exception):
    def __init__(self, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.communicate()
        raise


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "CheckContext",
    "CommandCache",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "GlobalOptions",
    "LocalSubprocessExecutor",
    "ShellRunner",
]
