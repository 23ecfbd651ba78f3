"""
specsheet — settings schema and validation.

Purpose
- Define the built-in defaults for ``specsheet.toml`` and validate payloads
  against them.

What should be included in this file
- Typed sections for ``[run]``, ``[display]`` and ``[exec]``.
- Validation rules for types, enums and numeric bounds, reported as
  structured issues (dotted path + message).
- Deterministic deep-merge helper used by the loader.

Non-functional requirements
- Unknown sections and keys are errors, not silently ignored.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

import psutil

from specsheet.constants import DEFAULT_READY_TIMEOUT_SECONDS, DEFAULT_TERMINATE_GRACE_SECONDS
from specsheet.errors import ConfigLoadError

PRINT_MODES: Final[tuple[str, ...]] = ("ansi", "dots", "json-lines", "tap")
LINE_VISIBILITY: Final[tuple[str, ...]] = ("hide", "show", "expand")
SUMMARY_VISIBILITY: Final[tuple[str, ...]] = ("hide", "show")
COLOR_MODES: Final[tuple[str, ...]] = ("always", "auto", "never")
DIRECTORY_MODES: Final[tuple[str, ...]] = ("check", "run")
KILL_SIGNALS: Final[tuple[str, ...]] = ("int", "term", "kill")


class RunConfig(TypedDict):
    threads: int
    delay: float
    random_order: bool
    directory: Literal["check", "run"]


class DisplayConfig(TypedDict):
    print: Literal["ansi", "dots", "json-lines", "tap"]
    successes: Literal["hide", "show", "expand"]
    failures: Literal["hide", "show", "expand"]
    summaries: Literal["hide", "show"]
    color: Literal["always", "auto", "never"]


class ExecConfig(TypedDict):
    kill_signal: Literal["int", "term", "kill"]
    grace_seconds: float
    ready_timeout_seconds: float


class SpecsheetConfig(TypedDict):
    run: RunConfig
    display: DisplayConfig
    exec: ExecConfig


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


class ConfigValidationError(ConfigLoadError):
    """Raised when a settings payload fails validation."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid settings:\n{rendered or 'unknown validation failure'}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


def default_config() -> SpecsheetConfig:
    """Built-in defaults; ``threads`` follows the host's logical CPU count."""

    return {
        "run": {
            "threads": psutil.cpu_count() or 1,
            "delay": 0.0,
            "random_order": False,
            "directory": "run",
        },
        "display": {
            "print": "ansi",
            "successes": "show",
            "failures": "expand",
            "summaries": "show",
            "color": "auto",
        },
        "exec": {
            "kill_signal": "term",
            "grace_seconds": DEFAULT_TERMINATE_GRACE_SECONDS,
            "ready_timeout_seconds": DEFAULT_READY_TIMEOUT_SECONDS,
        },
    }


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key in sorted(overlay):
        value = overlay[key]
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = merge_config(existing, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object]) -> tuple[ConfigValidationIssue, ...]:
    issues = _IssueCollector()
    _reject_unknown_keys(config, {"run", "display", "exec"}, "", issues)

    run = _section(config, "run", issues)
    if run is not None:
        _reject_unknown_keys(run, {"threads", "delay", "random_order", "directory"}, "run", issues)
        _check_int(run, "threads", "run", issues, minimum=1)
        _check_float(run, "delay", "run", issues, minimum=0.0)
        _check_bool(run, "random_order", "run", issues)
        _check_enum(run, "directory", "run", issues, DIRECTORY_MODES)

    display = _section(config, "display", issues)
    if display is not None:
        _reject_unknown_keys(
            display, {"print", "successes", "failures", "summaries", "color"}, "display", issues
        )
        _check_enum(display, "print", "display", issues, PRINT_MODES)
        _check_enum(display, "successes", "display", issues, LINE_VISIBILITY)
        _check_enum(display, "failures", "display", issues, LINE_VISIBILITY)
        _check_enum(display, "summaries", "display", issues, SUMMARY_VISIBILITY)
        _check_enum(display, "color", "display", issues, COLOR_MODES)

    exec_section = _section(config, "exec", issues)
    if exec_section is not None:
        _reject_unknown_keys(
            exec_section, {"kill_signal", "grace_seconds", "ready_timeout_seconds"}, "exec", issues
        )
        _check_enum(exec_section, "kill_signal", "exec", issues, KILL_SIGNALS)
        _check_float(exec_section, "grace_seconds", "exec", issues, minimum=0.0)
        _check_float(exec_section, "ready_timeout_seconds", "exec", issues, minimum=0.001)

    return issues.items()


def assert_valid_config(config: Mapping[str, object]) -> dict[str, Any]:
    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    return dict(config)


def _section(
    config: Mapping[str, object], name: str, issues: _IssueCollector
) -> Mapping[str, object] | None:
    value = config.get(name)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        issues.add(name, f"expected table, got {type(value).__name__}")
        return None
    return value


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _check_int(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int,
) -> None:
    if key not in payload:
        return
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(_join(path, key), f"expected integer, got {type(value).__name__}")
    elif value < minimum:
        issues.add(_join(path, key), f"must be >= {minimum}")


def _check_float(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float,
) -> None:
    if key not in payload:
        return
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(_join(path, key), f"expected number, got {type(value).__name__}")
    elif not math.isfinite(float(value)):
        issues.add(_join(path, key), "must be finite")
    elif value < minimum:
        issues.add(_join(path, key), f"must be >= {minimum}")


def _check_bool(
    payload: Mapping[str, object], key: str, path: str, issues: _IssueCollector
) -> None:
    if key in payload and not isinstance(payload[key], bool):
        issues.add(_join(path, key), f"expected boolean, got {type(payload[key]).__name__}")


def _check_enum(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    allowed_values: tuple[str, ...],
) -> None:
    if key not in payload:
        return
    value = payload[key]
    if not isinstance(value, str) or value not in allowed_values:
        expected = ", ".join(allowed_values)
        issues.add(_join(path, key), f"invalid value {value!r}; expected one of: {expected}")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


__all__ = [
    "COLOR_MODES",
    "DIRECTORY_MODES",
    "KILL_SIGNALS",
    "LINE_VISIBILITY",
    "PRINT_MODES",
    "SUMMARY_VISIBILITY",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DisplayConfig",
    "ExecConfig",
    "RunConfig",
    "SpecsheetConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
