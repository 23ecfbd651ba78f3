"""Exception taxonomy for failures that end a run or a document.

Per-parameter problems are not exceptions: they are collected as
``ParameterError`` values by ``specsheet.checks.params``. Failures inside a
check's own probe never leave the check; they become failing steps.
"""

from __future__ import annotations


class SpecsheetError(Exception):
    """Base class for errors raised by specsheet itself."""


class ArgumentError(SpecsheetError):
    """Invalid command-line configuration, reported before any document is read."""


class LoadError(SpecsheetError):
    """A check document could not be read or parsed."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class ConfigLoadError(SpecsheetError, ValueError):
    """The settings file or an environment override could not be used."""


class SupervisorError(SpecsheetError):
    """The side process misbehaved."""


class SupervisorReadyError(SupervisorError):
    """The side process exited or timed out before its readiness gate held."""


class SupervisorTerminateError(SupervisorError):
    """The side process survived every termination signal."""


__all__ = [
    "ArgumentError",
    "ConfigLoadError",
    "LoadError",
    "SpecsheetError",
    "SupervisorError",
    "SupervisorReadyError",
    "SupervisorTerminateError",
]
