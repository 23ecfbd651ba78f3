"""Typed extraction and validation of check parameters.

A check family declares its parameters as a ``ParameterSchema``. Reading a
raw table against the schema yields either the validated values or every
problem found, never a partial result:

- keys the schema does not declare are reported as unknown first;
- each declared parameter is coerced and run through its predicates, in
  declaration order, and may contribute its own error;
- the family's cross-parameter rules run last (conflicts, aliases,
  conditional requirements).

Error text is part of the output contract, so messages are built only here.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from types import MappingProxyType
from typing import Final

RawTable = Mapping[str, object]
Predicate = Callable[[object], "str | None"]
Coercer = Callable[[str, object], object]

_UNSET: Final = object()


class ErrorKind(StrEnum):
    MISSING = "missing"
    UNKNOWN = "unknown"
    INVALID = "invalid"
    CONFLICT = "conflict"
    ALIAS_CLASH = "alias-clash"


@dataclass(frozen=True, slots=True)
class ParameterError:
    """One problem with one parameter of one check."""

    kind: ErrorKind
    parameter: str
    value: object = None
    reason: str = ""
    other: str | None = None
    other_value: object = _UNSET

    @classmethod
    def missing(cls, parameter: str) -> ParameterError:
        return cls(ErrorKind.MISSING, parameter)

    @classmethod
    def unknown(cls, parameter: str) -> ParameterError:
        return cls(ErrorKind.UNKNOWN, parameter)

    @classmethod
    def invalid(cls, parameter: str, value: object, reason: str) -> ParameterError:
        return cls(ErrorKind.INVALID, parameter, value=value, reason=reason)

    @classmethod
    def conflict(
        cls, parameter: str, other: str, other_value: object = _UNSET
    ) -> ParameterError:
        return cls(ErrorKind.CONFLICT, parameter, other=other, other_value=other_value)

    @classmethod
    def alias_clash(cls, parameter: str, other: str) -> ParameterError:
        return cls(ErrorKind.ALIAS_CLASH, parameter, other=other)

    @property
    def message(self) -> str:
        if self.kind is ErrorKind.MISSING:
            return f"Parameter '{self.parameter}' is missing"
        if self.kind is ErrorKind.UNKNOWN:
            return f"Parameter '{self.parameter}' is unknown"
        if self.kind is ErrorKind.INVALID:
            return (
                f"Parameter '{self.parameter}' value '{display_value(self.value)}' "
                f"is invalid ({self.reason})"
            )
        if self.kind is ErrorKind.CONFLICT:
            if self.other_value is _UNSET:
                return (
                    f"Parameter '{self.parameter}' is inappropriate "
                    f"when parameter '{self.other}' is given"
                )
            return (
                f"Parameter '{self.parameter}' is inappropriate "
                f"when parameter '{self.other}' is '{display_value(self.other_value)}'"
            )
        return f"Parameters '{self.parameter}' and '{self.other}' are both given (they are aliases)"

    def __str__(self) -> str:
        return self.message


class InvalidParameter(Exception):
    """Raised by coercers; carries the errors for the offending parameter."""

    def __init__(self, *errors: ParameterError) -> None:
        super().__init__("; ".join(error.message for error in errors))
        self.errors = errors


class ParameterErrors:
    """Ordered collector used while reading one check."""

    def __init__(self) -> None:
        self._errors: list[ParameterError] = []

    def add(self, error: ParameterError) -> None:
        self._errors.append(error)

    def extend(self, errors: Sequence[ParameterError]) -> None:
        self._errors.extend(errors)

    def missing(self, parameter: str) -> None:
        self.add(ParameterError.missing(parameter))

    def invalid(self, parameter: str, value: object, reason: str) -> None:
        self.add(ParameterError.invalid(parameter, value, reason))

    def conflict(self, parameter: str, other: str, other_value: object = _UNSET) -> None:
        self.add(ParameterError.conflict(parameter, other, other_value))

    def alias_clash(self, parameter: str, other: str) -> None:
        self.add(ParameterError.alias_clash(parameter, other))

    def as_tuple(self) -> tuple[ParameterError, ...]:
        return tuple(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)

    def __iter__(self) -> Iterator[ParameterError]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)


# ---------------------------------------------------------------------------
# Coercers: raw document value -> typed value
# ---------------------------------------------------------------------------


def as_string(name: str, raw: object) -> str:
    if not isinstance(raw, str):
        raise InvalidParameter(ParameterError.invalid(name, raw, "it must be a string"))
    return raw


def as_integer(name: str, raw: object) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidParameter(ParameterError.invalid(name, raw, "it must be an integer"))
    return raw


def as_boolean(name: str, raw: object) -> bool:
    if not isinstance(raw, bool):
        raise InvalidParameter(ParameterError.invalid(name, raw, "it must be a boolean"))
    return raw


def as_table(name: str, raw: object) -> Mapping[str, object]:
    if not isinstance(raw, Mapping):
        raise InvalidParameter(ParameterError.invalid(name, raw, "it must be a table"))
    return MappingProxyType(dict(raw))


def as_string_array(name: str, raw: object) -> tuple[str, ...]:
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise InvalidParameter(
            ParameterError.invalid(name, raw, "it must be an array of strings")
        )
    return tuple(raw)


def as_string_map(name: str, raw: object) -> Mapping[str, str]:
    if not isinstance(raw, Mapping) or not all(
        isinstance(value, str) for value in raw.values()
    ):
        raise InvalidParameter(
            ParameterError.invalid(name, raw, "it must be a map of strings to strings")
        )
    return MappingProxyType({str(key): value for key, value in raw.items()})


def as_string_or_integer(name: str, raw: object) -> str | int:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    raise InvalidParameter(ParameterError.invalid(name, raw, "it must be a string or a number"))


# ---------------------------------------------------------------------------
# Predicates: typed value -> failure reason, or None when satisfied
# ---------------------------------------------------------------------------


def non_empty() -> Predicate:
    def check(value: object) -> str | None:
        if isinstance(value, (str, tuple, Mapping)) and len(value) == 0:
            return "it must not be empty"
        return None

    return check


def one_of(*choices: str) -> Predicate:
    reason = f"it must be {_join_choices(choices)}"

    def check(value: object) -> str | None:
        return None if value in choices else reason

    return check


def in_range(minimum: int, maximum: int) -> Predicate:
    def check(value: object) -> str | None:
        if isinstance(value, int) and minimum <= value <= maximum:
            return None
        return f"it must be between {minimum} and {maximum}"

    return check


def ip_address() -> Predicate:
    def check(value: object) -> str | None:
        try:
            ipaddress.ip_address(str(value))
        except ValueError:
            return "it must be an IP address"
        return None

    return check


def full_match(pattern: str, reason: str) -> Predicate:
    compiled = re.compile(pattern)

    def check(value: object) -> str | None:
        if isinstance(value, str) and compiled.fullmatch(value):
            return None
        return reason

    return check


def valid_regex() -> Predicate:
    def check(value: object) -> str | None:
        try:
            re.compile(str(value))
        except re.error as exc:
            return f"it must be a valid regex: {exc}"
        return None

    return check


def no_empty_items(reason: str) -> Predicate:
    def check(value: object) -> str | None:
        if isinstance(value, tuple) and any(item == "" for item in value):
            return reason
        return None

    return check


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Parameter:
    """Declaration of one accepted parameter."""

    name: str
    coerce: Coercer = as_string
    required: bool = False
    predicates: tuple[Predicate, ...] = ()

    def read(self, raw: object) -> object:
        value = self.coerce(self.name, raw)
        for predicate in self.predicates:
            reason = predicate(value)
            if reason is not None:
                raise InvalidParameter(ParameterError.invalid(self.name, raw, reason))
        return value


@dataclass(frozen=True, slots=True)
class ReadOutcome:
    """Result of reading a raw table: validated values or the collected errors."""

    values: Mapping[str, object] = field(default_factory=dict)
    errors: tuple[ParameterError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


CrossCheck = Callable[[Mapping[str, object], RawTable, ParameterErrors], None]


@dataclass(frozen=True, slots=True)
class ParameterSchema:
    """The full set of parameters one check family accepts."""

    parameters: tuple[Parameter, ...]

    def __post_init__(self) -> None:
        names = [parameter.name for parameter in self.parameters]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate parameter names in schema: {names}")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(parameter.name for parameter in self.parameters)

    def read(self, table: RawTable, cross_check: CrossCheck | None = None) -> ReadOutcome:
        errors = ParameterErrors()
        declared = set(self.names)

        for key in sorted(key for key in table if key not in declared):
            errors.add(ParameterError.unknown(key))

        values: dict[str, object] = {}
        for parameter in self.parameters:
            if parameter.name not in table:
                if parameter.required:
                    errors.missing(parameter.name)
                continue
            try:
                values[parameter.name] = parameter.read(table[parameter.name])
            except InvalidParameter as exc:
                errors.extend(exc.errors)

        if cross_check is not None:
            cross_check(values, table, errors)

        if errors:
            return ReadOutcome(errors=errors.as_tuple())
        return ReadOutcome(values=MappingProxyType(values))


def display_value(value: object) -> str:
    """Echo a raw value the way it was most likely written in the document."""

    if isinstance(value, str):
        return value
    return _display_nested(value)


def _display_nested(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        if not value:
            return "{}"
        body = ", ".join(f"{key} = {_display_nested(item)}" for key, item in value.items())
        return f"{{ {body} }}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_display_nested(item) for item in value) + "]"
    return repr(value)


def _join_choices(choices: Sequence[str]) -> str:
    quoted = [f"'{choice}'" for choice in choices]
    if len(quoted) == 1:
        return quoted[0]
    return ", ".join(quoted[:-1]) + " or " + quoted[-1]


__all__ = [
    "CrossCheck",
    "ErrorKind",
    "InvalidParameter",
    "Parameter",
    "ParameterError",
    "ParameterErrors",
    "ParameterSchema",
    "Predicate",
    "RawTable",
    "ReadOutcome",
    "as_boolean",
    "as_integer",
    "as_string",
    "as_string_array",
    "as_string_map",
    "as_string_or_integer",
    "as_table",
    "display_value",
    "full_match",
    "in_range",
    "ip_address",
    "no_empty_items",
    "non_empty",
    "one_of",
    "valid_regex",
]
