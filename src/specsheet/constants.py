"""Stable constants shared across the engine, checks and UI."""

from __future__ import annotations

from typing import Final

# Environment variables.
DEBUG_ENV_VAR: Final[str] = "SPECSHEET_DEBUG"
NO_COLOR_ENV_VAR: Final[str] = "NO_COLOR"
ENV_PREFIX: Final[str] = "SPECSHEET_"

# Settings file looked up in the working directory when --config is absent.
DEFAULT_CONFIG_FILE: Final[str] = "specsheet.toml"

# Input name that stands for standard input.
STDIN_INPUT: Final[str] = "-"

# Metadata keys every check entry may carry besides its parameters.
NAME_KEY: Final[str] = "name"
TAGS_KEY: Final[str] = "tags"

# Shell used to run `cmd` and `tap` checks unless `cmd.shell` is given.
DEFAULT_SHELL: Final[str] = "sh"

# Shell used to launch the side process.
SIDE_PROCESS_SHELL: Final[str] = "bash"

# Readiness polling for the side process.
READINESS_POLL_SECONDS: Final[float] = 0.1
PORT_CONNECT_TIMEOUT_SECONDS: Final[float] = 0.1
DEFAULT_READY_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_TERMINATE_GRACE_SECONDS: Final[float] = 5.0

# Time in-flight checks get to finish after an interrupt.
CANCEL_GRACE_SECONDS: Final[float] = 2.0

# Network probe timeouts.
TCP_CONNECT_TIMEOUT_SECONDS: Final[float] = 2.0
UDP_RESPONSE_TIMEOUT_SECONDS: Final[float] = 1.0
HTTP_TIMEOUT_SECONDS: Final[float] = 5.0
HTTP_USER_AGENT: Final[str] = "specsheet"

__all__ = [
    "CANCEL_GRACE_SECONDS",
    "DEBUG_ENV_VAR",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_READY_TIMEOUT_SECONDS",
    "DEFAULT_SHELL",
    "DEFAULT_TERMINATE_GRACE_SECONDS",
    "ENV_PREFIX",
    "HTTP_TIMEOUT_SECONDS",
    "HTTP_USER_AGENT",
    "NAME_KEY",
    "NO_COLOR_ENV_VAR",
    "PORT_CONNECT_TIMEOUT_SECONDS",
    "READINESS_POLL_SECONDS",
    "SIDE_PROCESS_SHELL",
    "STDIN_INPUT",
    "TAGS_KEY",
    "TCP_CONNECT_TIMEOUT_SECONDS",
    "UDP_RESPONSE_TIMEOUT_SECONDS",
]
