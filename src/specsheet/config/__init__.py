"""
specsheet — settings public API.

Purpose
- Load and validate ``specsheet.toml`` merged with environment and CLI
  overrides.
"""

from specsheet.config.loader import load_config
from specsheet.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    SpecsheetConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigValidationError",
    "ConfigValidationIssue",
    "SpecsheetConfig",
    "assert_valid_config",
    "default_config",
    "load_config",
    "merge_config",
    "validate_config",
]
