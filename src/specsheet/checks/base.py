"""The uniform interface every check family implements, and its registry.

A family is a ``Check`` subclass registered under its type tag. The class
declares a ``ParameterSchema`` (plus optional cross-parameter rules), and an
instance built from a validated ``CheckSpec`` can describe itself without
doing any I/O and run its probe to produce ordered ``Step`` values. All side
effects live in ``run``.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, ClassVar, NoReturn

import structlog

from specsheet.checks.params import ParameterErrors, ParameterSchema, RawTable, ReadOutcome
from specsheet.observability.logging import check_scope

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext


class StepStatus(StrEnum):
    """Outcome of one observation made while running a check."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class Step:
    """One atomic, ordered observation within a check."""

    status: StepStatus
    message: str
    details: tuple[str, ...] = ()

    @classmethod
    def passed(cls, message: str) -> Step:
        return cls(StepStatus.PASS, message)

    @classmethod
    def failed(cls, message: str, details: tuple[str, ...] = ()) -> Step:
        return cls(StepStatus.FAIL, message, details)

    @classmethod
    def errored(cls, message: str, details: tuple[str, ...] = ()) -> Step:
        return cls(StepStatus.ERROR, message, details)

    @classmethod
    def skipped(cls, message: str) -> Step:
        return cls(StepStatus.SKIP, message)

    @property
    def is_problem(self) -> bool:
        return self.status in (StepStatus.FAIL, StepStatus.ERROR)

    def to_dict(self) -> dict[str, object]:
        return {"status": self.status.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class DataPoint:
    """A property of a check used to correlate failures after a run."""

    kind: str
    value: str

    def __str__(self) -> str:
        return f"involving {self.kind} '{self.value}'"


@dataclass(frozen=True, slots=True)
class CheckSpec:
    """Immutable, validated description of one check to run."""

    check_type: str
    params: Mapping[str, object]
    tags: frozenset[str] = frozenset()
    name: str | None = None
    source: str | None = None
    index: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.params, MappingProxyType):
            object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))

    def get(self, key: str, default: object = None) -> object:
        return self.params.get(key, default)

    def with_params(self, params: Mapping[str, object]) -> CheckSpec:
        return replace(self, params=MappingProxyType(dict(params)))


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Outcome of running one check: its ordered steps and derived status."""

    spec: CheckSpec
    description: str
    steps: tuple[Step, ...]
    duration_ms: int = 0
    properties: tuple[DataPoint, ...] = ()

    @property
    def passed(self) -> bool:
        return bool(self.steps) and not any(step.is_problem for step in self.steps)

    @property
    def check_type(self) -> str:
        return self.spec.check_type

    @property
    def title(self) -> str:
        return self.spec.name or self.description

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.title,
            "type": self.check_type,
            "passed": self.passed,
            "stages": [step.to_dict() for step in self.steps],
        }


class Check(ABC):
    """Base class for check families.

    Subclasses set ``check_type`` and ``schema``, may override
    ``cross_check`` for rules spanning several parameters, and implement
    ``describe`` and ``run``.
    """

    check_type: ClassVar[str]
    schema: ClassVar[ParameterSchema]

    def __init__(self, spec: CheckSpec) -> None:
        if spec.check_type != self.check_type:
            _fail("spec", f"expected a {self.check_type!r} spec, got {spec.check_type!r}")
        self.spec = spec

    @classmethod
    def read(cls, table: RawTable) -> ReadOutcome:
        return cls.schema.read(table, cls.cross_check)

    @classmethod
    def cross_check(
        cls,
        values: Mapping[str, object],
        table: RawTable,
        errors: ParameterErrors,
    ) -> None:
        """Hook for rules that involve more than one parameter."""

    @abstractmethod
    def describe(self) -> str:
        """Deterministic text stating what the check verifies."""

    @abstractmethod
    async def run(self, context: CheckContext) -> list[Step]:
        """Run the probe and return its steps in order."""

    def commands(self) -> tuple[str, ...]:
        """External commands the probe would run, for listing."""

        return ()

    def properties(self) -> tuple[DataPoint, ...]:
        return ()

    async def execute(self, context: CheckContext) -> CheckResult:
        """Run the probe, turning any escaped exception into an error step."""

        logger = structlog.get_logger(__name__)
        description = self.describe()
        started_ns = time.monotonic_ns()
        with check_scope(check_type=self.check_type, check=self.spec.name or description):
            logger.debug("check_started")
            try:
                steps = await self.run(context)
            except Exception as exc:  # noqa: BLE001 - probe failures become steps.
                logger.warning("check_probe_crashed", error=str(exc))
                steps = [Step.errored(f"probe error: {exc}")]
            if not steps:
                steps = [Step.errored("the check made no observations")]
            duration_ms = max(0, (time.monotonic_ns() - started_ns) // 1_000_000)
            result = CheckResult(
                spec=self.spec,
                description=description,
                steps=tuple(steps),
                duration_ms=duration_ms,
                properties=self.properties(),
            )
            logger.debug("check_finished", passed=result.passed, duration_ms=duration_ms)
        return result


@dataclass(frozen=True, slots=True)
class CheckRegistration:
    check_type: str
    check_cls: type[Check]
    source: str = "builtin"


@dataclass(slots=True)
class CheckRegistry:
    """Type tag -> check family. Enumerable in lexical order."""

    _registrations: dict[str, CheckRegistration] = field(default_factory=dict)

    def register(self, check_cls: type[Check], *, source: str = "builtin") -> None:
        check_type = getattr(check_cls, "check_type", None)
        if not isinstance(check_type, str) or not check_type:
            _fail("check_cls", f"{check_cls.__name__} does not declare a check_type")
        if not isinstance(getattr(check_cls, "schema", None), ParameterSchema):
            _fail("check_cls", f"{check_cls.__name__} does not declare a ParameterSchema")

        existing = self._registrations.get(check_type)
        if existing is not None and existing.check_cls is not check_cls:
            _fail(
                "check_type",
                f"{check_type!r} already registered by {existing.check_cls.__name__}",
            )
        self._registrations[check_type] = CheckRegistration(check_type, check_cls, source)

    def contains(self, check_type: str) -> bool:
        return check_type in self._registrations

    def get(self, check_type: str) -> type[Check]:
        registration = self._registrations.get(check_type)
        if registration is None:
            known = ", ".join(self.registered_types())
            _fail("check_type", f"unknown check type {check_type!r}; registered: [{known}]")
        return registration.check_cls

    def build(self, spec: CheckSpec) -> Check:
        return self.get(spec.check_type)(spec)

    def registered_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._registrations))


DEFAULT_CHECK_REGISTRY = CheckRegistry()


def register_check(
    *, registry: CheckRegistry | None = None
) -> Callable[[type[Check]], type[Check]]:
    """Class decorator adding a check family to a registry."""

    target = registry if registry is not None else DEFAULT_CHECK_REGISTRY

    def decorator(check_cls: type[Check]) -> type[Check]:
        target.register(check_cls)
        return check_cls

    return decorator


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "DEFAULT_CHECK_REGISTRY",
    "Check",
    "CheckRegistration",
    "CheckRegistry",
    "CheckResult",
    "CheckSpec",
    "DataPoint",
    "Step",
    "StepStatus",
    "register_check",
]
