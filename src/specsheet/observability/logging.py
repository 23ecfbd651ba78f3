"""structlog setup for diagnostic output on standard error.

Diagnostics never share a stream with reporter output: reporters own
standard output, and everything logged here goes to standard error. Logging
is quiet (warnings only) unless ``SPECSHEET_DEBUG`` is set; ``json`` selects
one canonical JSON object per line instead of the console renderer.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO, Final

import structlog

from specsheet.constants import DEBUG_ENV_VAR

_LOGGER_NAME: Final[str] = "specsheet"
_JSON_MODE: Final[str] = "json"

_HANDLER_LOCK = threading.Lock()
_ACTIVE_HANDLER: logging.Handler | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """How diagnostics are filtered and rendered."""

    level: int | str = "WARNING"
    json_lines: bool = False
    stream: IO[str] | None = None
    logger_name: str = _LOGGER_NAME


def logging_config_from_env(environ: Mapping[str, str] | None = None) -> LoggingConfig:
    """Derive the logging config from ``SPECSHEET_DEBUG``."""

    env = os.environ if environ is None else environ
    raw = env.get(DEBUG_ENV_VAR, "").strip()
    if not raw:
        return LoggingConfig()
    if raw.lower() == _JSON_MODE:
        return LoggingConfig(level="DEBUG", json_lines=True)
    return LoggingConfig(level="DEBUG")


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Install the stderr handler and point structlog at stdlib logging.

    Calling this again replaces the previous handler, so tests and repeated
    CLI invocations in one process do not stack handlers.
    """

    cfg = config if config is not None else logging_config_from_env()
    level = _parse_log_level(cfg.level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer: structlog.types.Processor
    if cfg.json_lines:
        renderer = structlog.processors.JSONRenderer(sort_keys=True, ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(cfg.stream if cfg.stream is not None else sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    logger = logging.getLogger(cfg.logger_name)
    logger.setLevel(level)
    logger.propagate = False

    global _ACTIVE_HANDLER
    with _HANDLER_LOCK:
        if _ACTIVE_HANDLER is not None:
            logger.removeHandler(_ACTIVE_HANDLER)
            _ACTIVE_HANDLER.close()
        logger.addHandler(handler)
        _ACTIVE_HANDLER = handler

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return logger


def reset_logging(logger_name: str = _LOGGER_NAME) -> None:
    """Remove the installed handler and restore structlog defaults."""

    global _ACTIVE_HANDLER
    with _HANDLER_LOCK:
        if _ACTIVE_HANDLER is not None:
            logging.getLogger(logger_name).removeHandler(_ACTIVE_HANDLER)
            _ACTIVE_HANDLER.close()
            _ACTIVE_HANDLER = None
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@contextmanager
def check_scope(*, check_type: str, check: str) -> Iterator[None]:
    """Bind the running check to every log event emitted inside the scope."""

    with structlog.contextvars.bound_contextvars(check_type=check_type, check=check):
        yield


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value

    normalized = value.strip().upper()
    parsed = logging.getLevelName(normalized)
    if isinstance(parsed, int):
        return parsed

    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "LoggingConfig",
    "check_scope",
    "configure_logging",
    "logging_config_from_env",
    "reset_logging",
]
