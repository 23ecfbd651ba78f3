"""Lifecycle of the optional side process that checks run against.

The supervisor is the only owner of the process handle. Everything else
observes readiness through ``wait_ready`` or the ``ready`` event.

States::

    not-started -> starting -> ready -> running-checks -> terminating
                                                     -> terminated | terminate-failed

``terminate`` may be entered from ``starting`` as well, when readiness fails
or the run is interrupted before the gate holds.
"""

from __future__ import annotations

import asyncio
import os
import re
import signal
from contextlib import suppress
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Final

import structlog

from specsheet.constants import (
    DEFAULT_READY_TIMEOUT_SECONDS,
    DEFAULT_TERMINATE_GRACE_SECONDS,
    PORT_CONNECT_TIMEOUT_SECONDS,
    READINESS_POLL_SECONDS,
    SIDE_PROCESS_SHELL,
)
from specsheet.errors import (
    ArgumentError,
    SupervisorError,
    SupervisorReadyError,
    SupervisorTerminateError,
)
from specsheet.utils.concurrency import CancellationToken, poll_until, run_with_timeout


class SideProcessState(StrEnum):
    NOT_STARTED = "not-started"
    STARTING = "starting"
    READY = "ready"
    RUNNING_CHECKS = "running-checks"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    TERMINATE_FAILED = "terminate-failed"


_TRANSITIONS: Final[dict[SideProcessState, frozenset[SideProcessState]]] = {
    SideProcessState.NOT_STARTED: frozenset({SideProcessState.STARTING}),
    SideProcessState.STARTING: frozenset(
        {SideProcessState.READY, SideProcessState.TERMINATING}
    ),
    SideProcessState.READY: frozenset(
        {SideProcessState.RUNNING_CHECKS, SideProcessState.TERMINATING}
    ),
    SideProcessState.RUNNING_CHECKS: frozenset({SideProcessState.TERMINATING}),
    SideProcessState.TERMINATING: frozenset(
        {SideProcessState.TERMINATED, SideProcessState.TERMINATE_FAILED}
    ),
    SideProcessState.TERMINATED: frozenset(),
    SideProcessState.TERMINATE_FAILED: frozenset(),
}


class KillSignal(StrEnum):
    """Signal sent first when stopping the side process."""

    INT = "int"
    TERM = "term"
    KILL = "kill"

    @property
    def signum(self) -> signal.Signals:
        return {
            KillSignal.INT: signal.SIGINT,
            KillSignal.TERM: signal.SIGTERM,
            KillSignal.KILL: signal.SIGKILL,
        }[self]

    @classmethod
    def parse(cls, raw: str) -> KillSignal:
        """Accept ``term``, ``sigterm``, ``SIGTERM`` or the signal number."""

        text = raw.strip().lower()
        text = text.removeprefix("sig")
        for member in cls:
            if text in (member.value, str(int(member.signum))):
                return member
        raise ArgumentError(f"--exec-kill-signal: invalid signal {raw!r} (use int, term or kill)")


class GateKind(StrEnum):
    IMMEDIATE = "immediate"
    DELAY = "delay"
    PORT = "port"
    FILE = "file"
    LINE = "line"


@dataclass(frozen=True, slots=True)
class ReadinessGate:
    """The one condition that must hold before checks may start."""

    kind: GateKind = GateKind.IMMEDIATE
    delay_seconds: float = 0.0
    port: int | None = None
    path: Path | None = None
    pattern: re.Pattern[str] | None = None

    @classmethod
    def immediate(cls) -> ReadinessGate:
        return cls()

    @classmethod
    def delay(cls, seconds: float) -> ReadinessGate:
        if seconds < 0:
            raise ArgumentError("--exec-delay: the delay must not be negative")
        return cls(GateKind.DELAY, delay_seconds=seconds)

    @classmethod
    def on_port(cls, port: int) -> ReadinessGate:
        if not 1 <= port <= 65535:
            raise ArgumentError(f"--exec-port: {port} is not a port number")
        return cls(GateKind.PORT, port=port)

    @classmethod
    def on_file(cls, path: str | Path) -> ReadinessGate:
        return cls(GateKind.FILE, path=Path(path))

    @classmethod
    def on_line(cls, regex: str) -> ReadinessGate:
        try:
            pattern = re.compile(regex)
        except re.error as exc:
            raise ArgumentError(f"--exec-line: invalid regex {regex!r}: {exc}") from exc
        return cls(GateKind.LINE, pattern=pattern)

    def describe(self) -> str:
        match self.kind:
            case GateKind.DELAY:
                return f"a delay of {self.delay_seconds}s"
            case GateKind.PORT:
                return f"port {self.port} accepting connections"
            case GateKind.FILE:
                return f"file {self.path} existing"
            case GateKind.LINE:
                assert self.pattern is not None
                return f"an output line matching /{self.pattern.pattern}/"
            case _:
                return "nothing"


@dataclass(frozen=True, slots=True)
class SideProcessConfig:
    shell: str
    gate: ReadinessGate = ReadinessGate()
    kill_signal: KillSignal = KillSignal.TERM
    ready_timeout_seconds: float = DEFAULT_READY_TIMEOUT_SECONDS
    grace_seconds: float = DEFAULT_TERMINATE_GRACE_SECONDS
    cwd: Path | None = None


class SideProcessSupervisor:
    """Launches the side process, gates on its readiness and stops it.

    The process runs in its own session so that termination signals reach
    the whole process group started by the shell.
    """

    def __init__(
        self,
        config: SideProcessConfig,
        *,
        cancel_token: CancellationToken | None = None,
        poll_interval_seconds: float = READINESS_POLL_SECONDS,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._cancel_token = cancel_token or CancellationToken()
        self._poll_interval = poll_interval_seconds
        self._logger = logger or structlog.get_logger(__name__)
        self._state = SideProcessState.NOT_STARTED
        self._process: asyncio.subprocess.Process | None = None
        self._ready = asyncio.Event()
        self._line_seen = asyncio.Event()
        self._drains: list[asyncio.Task[None]] = []

    @property
    def state(self) -> SideProcessState:
        return self._state

    @property
    def ready(self) -> asyncio.Event:
        return self._ready

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def _transition(self, target: SideProcessState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise SupervisorError(f"side process cannot go from {self._state} to {target}")
        self._logger.debug("side_process_state", old=self._state.value, new=target.value)
        self._state = target

    async def start(self) -> None:
        """Spawn the shell command; readiness is awaited separately."""

        self._transition(SideProcessState.STARTING)
        try:
            self._process = await asyncio.create_subprocess_exec(
                SIDE_PROCESS_SHELL,
                "-c",
                self._config.shell,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._config.cwd) if self._config.cwd is not None else None,
                start_new_session=True,
            )
        except OSError as exc:
            self._state = SideProcessState.TERMINATED
            raise SupervisorReadyError(f"side process could not be started: {exc}") from exc

        assert self._process.stdout is not None
        assert self._process.stderr is not None
        self._drains = [
            asyncio.create_task(self._drain(self._process.stdout, "stdout")),
            asyncio.create_task(self._drain(self._process.stderr, "stderr")),
        ]
        self._logger.info("side_process_started", pid=self._process.pid, shell=self._config.shell)

    async def _drain(self, stream: asyncio.StreamReader, name: str) -> None:
        pattern = self._config.gate.pattern if name == "stdout" else None
        while True:
            raw = await stream.readline()
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            self._logger.debug("side_process_output", stream=name, line=line)
            if pattern is not None and not self._line_seen.is_set() and pattern.search(line):
                self._line_seen.set()

    async def wait_ready(self) -> None:
        """Block until the gate holds.

        Raises ``SupervisorReadyError`` when the process exits first or the
        wait exceeds ``ready_timeout_seconds``. On cancellation the process is
        killed at once and ``asyncio.CancelledError`` propagates.
        """

        if self._state is not SideProcessState.STARTING:
            raise SupervisorError(f"side process is {self._state}, not starting")
        gate = self._config.gate
        self._logger.info("side_process_waiting", gate=gate.describe())
        try:
            await run_with_timeout(
                self._gate_or_exit(gate),
                self._config.ready_timeout_seconds,
                self._cancel_token,
            )
        except TimeoutError as exc:
            raise SupervisorReadyError(
                f"side process was not ready after {self._config.ready_timeout_seconds}s"
                f" (waiting for {gate.describe()})"
            ) from exc
        except asyncio.CancelledError:
            self._logger.warning("side_process_wait_cancelled")
            await self._kill_now()
            raise

        self._transition(SideProcessState.READY)
        self._ready.set()
        self._logger.info("side_process_ready", pid=self.pid)

    async def _gate_or_exit(self, gate: ReadinessGate) -> None:
        assert self._process is not None
        gate_task = asyncio.create_task(self._wait_gate(gate))
        exit_task = asyncio.create_task(self._process.wait())
        try:
            done, _ = await asyncio.wait(
                {gate_task, exit_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if gate_task in done:
                await gate_task
                return
            raise SupervisorReadyError(
                f"side process exited with status {exit_task.result()} before it was ready"
            )
        finally:
            for task in (gate_task, exit_task):
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def _wait_gate(self, gate: ReadinessGate) -> None:
        match gate.kind:
            case GateKind.DELAY:
                await asyncio.sleep(gate.delay_seconds)
            case GateKind.PORT:
                assert gate.port is not None
                await poll_until(
                    lambda: _port_open(gate.port),
                    interval_seconds=self._poll_interval,
                    cancel_token=self._cancel_token,
                )
            case GateKind.FILE:
                assert gate.path is not None
                path = gate.path
                if not path.is_absolute() and self._config.cwd is not None:
                    path = self._config.cwd / path

                async def exists() -> bool:
                    return await asyncio.to_thread(path.exists)

                await poll_until(
                    exists,
                    interval_seconds=self._poll_interval,
                    cancel_token=self._cancel_token,
                )
            case GateKind.LINE:
                await self._line_seen.wait()
            case _:
                return

    def mark_running_checks(self) -> None:
        self._transition(SideProcessState.RUNNING_CHECKS)

    async def terminate(self) -> SideProcessState:
        """Stop the process: configured signal, then SIGKILL after the grace period.

        Never raises for a process that refuses to die; the outcome is logged
        and reflected in the returned state.
        """

        if self._state in (
            SideProcessState.NOT_STARTED,
            SideProcessState.TERMINATED,
            SideProcessState.TERMINATE_FAILED,
        ):
            return self._state
        self._transition(SideProcessState.TERMINATING)

        try:
            await self._stop_process()
        except SupervisorTerminateError as exc:
            self._logger.error("side_process_terminate_failed", pid=self.pid, error=str(exc))
            self._transition(SideProcessState.TERMINATE_FAILED)
        else:
            self._transition(SideProcessState.TERMINATED)
            self._logger.info("side_process_terminated", pid=self.pid)
        finally:
            await self._stop_drains()
        return self._state

    async def _stop_process(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return

        first = self._config.kill_signal.signum
        self._signal_group(first)
        if await self._exited_within(self._config.grace_seconds):
            return
        if first is not signal.SIGKILL:
            self._logger.warning("side_process_escalating", pid=process.pid, signal="SIGKILL")
            self._signal_group(signal.SIGKILL)
            if await self._exited_within(self._config.grace_seconds):
                return
        raise SupervisorTerminateError(
            f"side process {process.pid} still running after SIGKILL"
        )

    def _signal_group(self, signum: signal.Signals) -> None:
        assert self._process is not None
        try:
            os.killpg(self._process.pid, signum)
        except ProcessLookupError:
            return
        except PermissionError as exc:
            raise SupervisorTerminateError(
                f"not permitted to signal side process {self._process.pid}: {exc}"
            ) from exc

    async def _exited_within(self, seconds: float) -> bool:
        assert self._process is not None
        try:
            await asyncio.wait_for(self._process.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _kill_now(self) -> None:
        if self._state is SideProcessState.STARTING:
            self._transition(SideProcessState.TERMINATING)
        process = self._process
        try:
            if process is not None and process.returncode is None:
                self._signal_group(signal.SIGKILL)
                await self._exited_within(self._config.grace_seconds)
        except SupervisorTerminateError as exc:
            self._logger.error("side_process_terminate_failed", pid=self.pid, error=str(exc))
        failed = process is not None and process.returncode is None
        self._state = (
            SideProcessState.TERMINATE_FAILED if failed else SideProcessState.TERMINATED
        )
        await self._stop_drains()

    async def _stop_drains(self) -> None:
        for task in self._drains:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._drains = []


async def _port_open(port: int) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection("127.0.0.1", port),
            timeout=PORT_CONNECT_TIMEOUT_SECONDS,
        )
    except (OSError, TimeoutError):
        return False
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()
    return True


__all__ = [
    "GateKind",
    "KillSignal",
    "ReadinessGate",
    "SideProcessConfig",
    "SideProcessState",
    "SideProcessSupervisor",
]
