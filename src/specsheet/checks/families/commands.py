"""Checks that run a user-supplied shell command: ``cmd`` and ``tap``."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Final

from specsheet.checks.base import Check, Step, register_check
from specsheet.checks.contents import ContentsMatcher, MatcherKind, as_contents
from specsheet.checks.params import (
    Parameter,
    ParameterSchema,
    as_integer,
    as_string,
    as_string_map,
    in_range,
    non_empty,
)

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext, CommandResult

_SHELL = Parameter("shell", as_string, required=True, predicates=(non_empty(),))
_ENVIRONMENT = Parameter("environment", as_string_map)

_TAP_PLAN: Final = re.compile(r"^(\d+)\.\.(\d+)$")
_TAP_RESULT: Final = re.compile(r"^(?:(not)\s+)?ok\s+(\d+)(?:\s*-\s*(.+))?$")


class _ShellCheck(Check):
    """Shared handling of the ``shell`` and ``environment`` parameters."""

    @property
    def command(self) -> str:
        return str(self.spec.params["shell"])

    @property
    def environment(self) -> Mapping[str, str]:
        env = self.spec.get("environment")
        return env if isinstance(env, Mapping) else {}

    @property
    def invocation(self) -> str:
        prefix = "".join(f"{key}={value} " for key, value in sorted(self.environment.items()))
        return prefix + self.command

    def commands(self) -> tuple[str, ...]:
        return (self.invocation,)

    async def _run(self, context: CheckContext) -> CommandResult:
        return await context.run_shell(self.command, self.environment)


@register_check()
class CommandCheck(_ShellCheck):
    """Runs a command and inspects its exit status and output streams."""

    check_type = "cmd"
    schema = ParameterSchema(
        (
            _SHELL,
            _ENVIRONMENT,
            Parameter("status", as_integer, predicates=(in_range(0, 255),)),
            Parameter("stdout", as_contents),
            Parameter("stderr", as_contents),
        )
    )

    def describe(self) -> str:
        status = self.spec.get("status")
        stdout: ContentsMatcher | None = self.spec.get("stdout")  # type: ignore[assignment]
        stderr: ContentsMatcher | None = self.spec.get("stderr")  # type: ignore[assignment]

        head = f"Command '{self.invocation}' "
        if stdout is None and stderr is None:
            return head + ("executes" if status is None else f"returns '{status}'")

        head += "executes with" if status is None else f"returns '{status}' with"
        if stdout is not None and stderr is not None and stdout == stderr:
            if stdout.kind is MatcherKind.EMPTY:
                return head + " empty stdout and stderr"
            if stdout.kind is MatcherKind.NON_EMPTY:
                return head + " non-empty stdout and stderr"

        parts = [
            matcher.describe(noun)
            for noun, matcher in (("stdout", stdout), ("stderr", stderr))
            if matcher is not None
        ]
        return f"{head} {' and '.join(parts)}"

    async def run(self, context: CheckContext) -> list[Step]:
        result = await self._run(context)
        if result.error is not None:
            return [Step.errored(f"command could not be run: {result.error}")]

        steps = [Step.passed("command was executed")]
        status = self.spec.get("status")
        if status is not None:
            if result.exit_code == status:
                steps.append(Step.passed("status code matches"))
            else:
                steps.append(Step.failed(f"command exited with status code '{result.exit_code}'"))

        for noun, output in (("stdout", result.stdout), ("stderr", result.stderr)):
            matcher = self.spec.get(noun)
            if isinstance(matcher, ContentsMatcher):
                steps.append(
                    await matcher.evaluate(
                        output.encode("utf-8"), noun, base=context.working_directory
                    )
                )
        return steps


@register_check()
class TapCheck(_ShellCheck):
    """Runs a command whose output follows the Test Anything Protocol."""

    check_type = "tap"
    schema = ParameterSchema((_SHELL, _ENVIRONMENT))

    def describe(self) -> str:
        return f"TAP tests for command '{self.invocation}'"

    async def run(self, context: CheckContext) -> list[Step]:
        result = await self._run(context)
        if result.error is not None:
            return [Step.errored("The command failed to be run", (result.error,))]
        return parse_tap(result.stdout)


def parse_tap(output: str) -> list[Step]:
    """Turn TAP output into one step per test line, plus a plan check."""

    steps: list[Step] = []
    expected: int | None = None
    count = 0

    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        plan = _TAP_PLAN.match(stripped)
        if plan is not None and expected is None:
            expected = int(plan.group(2))
            continue

        outcome = _TAP_RESULT.match(stripped)
        if outcome is None:
            steps.append(Step.failed(f"Unparseable TAP line '{line}'"))
            continue

        count += 1
        number = outcome.group(2)
        suffix = f" ({outcome.group(3)})" if outcome.group(3) else ""
        if outcome.group(1):
            steps.append(Step.failed(f"TAP test #{number} failed{suffix}"))
        else:
            steps.append(Step.passed(f"TAP test #{number} passed{suffix}"))

    if expected is not None:
        if count == expected:
            steps.append(Step.passed(f"Correct number ({expected}) of tests run"))
        else:
            steps.append(
                Step.failed(f"Incorrect number of tests run (expected {expected}, got {count})")
            )
    return steps


__all__ = ["CommandCheck", "TapCheck", "parse_tap"]
