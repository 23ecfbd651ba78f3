"""Parameter reading: coercion, predicates, unknown keys and error text."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from specsheet.checks.families.commands import CommandCheck
from specsheet.checks.families.network import TcpCheck
from specsheet.checks.families.system import UserCheck
from specsheet.checks.params import (
    ErrorKind,
    InvalidParameter,
    Parameter,
    ParameterError,
    ParameterSchema,
    as_integer,
    as_string,
    display_value,
    in_range,
    non_empty,
    one_of,
)


def _messages(outcome) -> list[str]:
    return [error.message for error in outcome.errors]


@pytest.mark.unit
def test_valid_table_yields_values_and_no_errors() -> None:
    outcome = CommandCheck.read({"shell": "echo hi", "status": 0})

    assert outcome.ok
    assert outcome.values["shell"] == "echo hi"
    assert outcome.values["status"] == 0


@pytest.mark.unit
def test_unknown_parameter_is_reported_by_name() -> None:
    outcome = CommandCheck.read({"shell": "echo hi", "stdoot": {"empty": True}})

    assert not outcome.ok
    assert _messages(outcome) == ["Parameter 'stdoot' is unknown"]


@pytest.mark.unit
def test_missing_required_parameter() -> None:
    outcome = CommandCheck.read({})

    assert _messages(outcome) == ["Parameter 'shell' is missing"]
    assert outcome.errors[0].kind is ErrorKind.MISSING


@pytest.mark.unit
def test_empty_shell_is_invalid() -> None:
    outcome = CommandCheck.read({"shell": ""})

    assert _messages(outcome) == ["Parameter 'shell' value '' is invalid (it must not be empty)"]


@pytest.mark.unit
def test_every_problem_in_one_entry_is_collected() -> None:
    outcome = CommandCheck.read({"shell": 3, "status": 300, "extra": True})

    assert _messages(outcome) == [
        "Parameter 'extra' is unknown",
        "Parameter 'shell' value '3' is invalid (it must be a string)",
        "Parameter 'status' value '300' is invalid (it must be between 0 and 255)",
    ]


@pytest.mark.unit
def test_cross_parameter_conflict_names_the_other_value() -> None:
    outcome = UserCheck.read({"user": "bin", "state": "missing", "login_shell": "/bin/sh"})

    assert _messages(outcome) == [
        "Parameter 'login_shell' is inappropriate when parameter 'state' is 'missing'"
    ]


@pytest.mark.unit
def test_one_of_lists_the_choices() -> None:
    outcome = TcpCheck.read({"port": 80, "state": "sideways"})

    assert len(outcome.errors) == 1
    assert "it must be 'open' or 'closed'" in outcome.errors[0].message


@pytest.mark.unit
def test_alias_clash_message() -> None:
    error = ParameterError.alias_clash("mode", "permissions")

    assert str(error) == "Parameters 'mode' and 'permissions' are both given (they are aliases)"


@pytest.mark.unit
def test_duplicate_schema_parameters_are_rejected() -> None:
    with pytest.raises(ValueError, match="duplicate parameter names"):
        ParameterSchema((Parameter("a"), Parameter("a")))


@pytest.mark.unit
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("plain", "plain"),
        (True, "true"),
        (12, "12"),
        (["a", 1], '["a", 1]'),
        ({"regex": "x"}, '{ regex = "x" }'),
        ({}, "{}"),
    ],
)
def test_display_value_echoes_document_syntax(value: object, expected: str) -> None:
    assert display_value(value) == expected


@pytest.mark.unit
@given(st.booleans())
def test_as_integer_never_accepts_booleans(value: bool) -> None:
    with pytest.raises(InvalidParameter):
        as_integer("status", value)


@pytest.mark.unit
@given(st.integers(min_value=0, max_value=255))
def test_status_range_accepts_every_byte(value: int) -> None:
    parameter = Parameter("status", as_integer, predicates=(in_range(0, 255),))
    assert parameter.read(value) == value


@pytest.mark.unit
def test_predicates_run_in_order_and_stop_at_first_failure() -> None:
    parameter = Parameter("state", as_string, predicates=(non_empty(), one_of("a", "b")))

    with pytest.raises(InvalidParameter) as excinfo:
        parameter.read("")

    assert [error.reason for error in excinfo.value.errors] == ["it must not be empty"]
