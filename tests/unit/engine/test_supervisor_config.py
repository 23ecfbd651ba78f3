"""Side-process settings: kill-signal names and readiness-gate validation."""

from __future__ import annotations

import signal

import pytest

from specsheet.engine.supervisor import KillSignal, ReadinessGate
from specsheet.errors import ArgumentError


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [("term", KillSignal.TERM), ("SIGINT", KillSignal.INT), ("9", KillSignal.KILL)],
)
def test_kill_signal_parsing(raw: str, expected: KillSignal) -> None:
    assert KillSignal.parse(raw) is expected


@pytest.mark.unit
def test_kill_signal_rejects_other_signals() -> None:
    with pytest.raises(ArgumentError, match="invalid signal"):
        KillSignal.parse("hup")
    assert KillSignal.TERM.signum is signal.SIGTERM


@pytest.mark.unit
def test_gate_validation() -> None:
    with pytest.raises(ArgumentError):
        ReadinessGate.on_line("(unclosed")
    with pytest.raises(ArgumentError):
        ReadinessGate.on_port(70000)
    with pytest.raises(ArgumentError):
        ReadinessGate.delay(-1)
    assert ReadinessGate.on_port(8080).describe() == "port 8080 accepting connections"
