"""Side-process lifecycle against real ``bash`` children."""

from __future__ import annotations

import asyncio
import socket
from pathlib import Path

import pytest

from specsheet.engine.supervisor import (
    ReadinessGate,
    SideProcessConfig,
    SideProcessState,
    SideProcessSupervisor,
)
from specsheet.errors import SupervisorReadyError
from specsheet.utils.concurrency import CancellationToken


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _supervisor(shell: str, gate: ReadinessGate, **overrides) -> SideProcessSupervisor:
    config = SideProcessConfig(
        shell=shell,
        gate=gate,
        ready_timeout_seconds=overrides.pop("ready_timeout_seconds", 5.0),
        grace_seconds=overrides.pop("grace_seconds", 1.0),
        **overrides,
    )
    return SideProcessSupervisor(config, poll_interval_seconds=0.02)


@pytest.mark.integration
async def test_immediate_gate_then_terminate() -> None:
    supervisor = _supervisor("sleep 30", ReadinessGate.immediate())

    await supervisor.start()
    await supervisor.wait_ready()
    supervisor.mark_running_checks()
    assert supervisor.ready.is_set()
    assert supervisor.state is SideProcessState.RUNNING_CHECKS

    assert await supervisor.terminate() is SideProcessState.TERMINATED


@pytest.mark.integration
async def test_line_gate_waits_for_matching_output() -> None:
    supervisor = _supervisor(
        "echo starting; sleep 0.1; echo 'listening on 8080'; sleep 30",
        ReadinessGate.on_line(r"listening on \d+"),
    )

    await supervisor.start()
    await supervisor.wait_ready()

    assert supervisor.state is SideProcessState.READY
    await supervisor.terminate()


@pytest.mark.integration
async def test_file_gate(tmp_path: Path) -> None:
    marker = tmp_path / "ready"
    supervisor = _supervisor(
        f"sleep 0.1; touch '{marker}'; sleep 30", ReadinessGate.on_file(marker)
    )

    await supervisor.start()
    await supervisor.wait_ready()

    assert marker.exists()
    await supervisor.terminate()


@pytest.mark.integration
async def test_port_gate_times_out() -> None:
    port = _unused_port()
    supervisor = _supervisor(
        "sleep 30", ReadinessGate.on_port(port), ready_timeout_seconds=0.3
    )

    await supervisor.start()
    with pytest.raises(SupervisorReadyError, match=f"waiting for port {port}"):
        await supervisor.wait_ready()

    assert await supervisor.terminate() is SideProcessState.TERMINATED


@pytest.mark.integration
async def test_early_exit_fails_readiness() -> None:
    supervisor = _supervisor("exit 3", ReadinessGate.delay(5))

    await supervisor.start()
    with pytest.raises(SupervisorReadyError, match="exited with status 3"):
        await supervisor.wait_ready()
    await supervisor.terminate()


@pytest.mark.integration
async def test_ignored_signal_escalates_to_kill() -> None:
    supervisor = _supervisor(
        "trap '' TERM; echo armed; while true; do sleep 0.05; done",
        ReadinessGate.on_line("armed"),
        grace_seconds=0.3,
    )

    await supervisor.start()
    await supervisor.wait_ready()

    assert await supervisor.terminate() is SideProcessState.TERMINATED


@pytest.mark.integration
async def test_cancellation_during_wait_kills_the_process() -> None:
    token = CancellationToken()
    config = SideProcessConfig(shell="sleep 30", gate=ReadinessGate.delay(10))
    supervisor = SideProcessSupervisor(config, cancel_token=token)

    await supervisor.start()
    asyncio.get_running_loop().call_later(0.1, token.cancel, "interrupted")
    with pytest.raises(asyncio.CancelledError):
        await supervisor.wait_ready()

    assert supervisor.state is SideProcessState.TERMINATED
