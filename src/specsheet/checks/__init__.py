"""
specsheet — check abstraction public API.

Purpose
- Parameter validation, the ``Check`` base class and its registry, command
  execution, and the built-in families.

Functional requirements
- Every built-in family is registered once this package is imported.
"""

from specsheet.checks import families
from specsheet.checks.base import (
    DEFAULT_CHECK_REGISTRY,
    Check,
    CheckRegistration,
    CheckRegistry,
    CheckResult,
    CheckSpec,
    DataPoint,
    Step,
    StepStatus,
    register_check,
)
from specsheet.checks.contents import ContentsMatcher, MatcherKind, as_contents
from specsheet.checks.execution import (
    CheckContext,
    CommandCache,
    CommandExecutor,
    CommandResult,
    CommandSpec,
    GlobalOptions,
    LocalSubprocessExecutor,
    ShellRunner,
)
from specsheet.checks.params import (
    ErrorKind,
    ParameterError,
    ParameterSchema,
    ReadOutcome,
)

__all__ = [
    "DEFAULT_CHECK_REGISTRY",
    "Check",
    "CheckContext",
    "CheckRegistration",
    "CheckRegistry",
    "CheckResult",
    "CheckSpec",
    "CommandCache",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "ContentsMatcher",
    "DataPoint",
    "ErrorKind",
    "GlobalOptions",
    "LocalSubprocessExecutor",
    "MatcherKind",
    "ParameterError",
    "ParameterSchema",
    "ReadOutcome",
    "ShellRunner",
    "Step",
    "StepStatus",
    "as_contents",
    "families",
    "register_check",
]
