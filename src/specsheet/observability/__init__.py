"""Diagnostic logging for specsheet runs."""

from specsheet.observability.logging import (
    LoggingConfig,
    check_scope,
    configure_logging,
    logging_config_from_env,
    reset_logging,
)

__all__ = [
    "LoggingConfig",
    "check_scope",
    "configure_logging",
    "logging_config_from_env",
    "reset_logging",
]
