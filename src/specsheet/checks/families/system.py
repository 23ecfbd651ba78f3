"""Host state: systemd services, local users and groups, macOS defaults and ufw rules."""

from __future__ import annotations

import asyncio
import grp
import os
import pwd
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Final

from specsheet.checks.base import Check, DataPoint, Step, register_check
from specsheet.checks.params import (
    Parameter,
    ParameterErrors,
    ParameterSchema,
    RawTable,
    as_boolean,
    as_integer,
    as_string,
    as_string_array,
    as_string_or_integer,
    in_range,
    no_empty_items,
    non_empty,
    one_of,
)

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext, CommandResult

# systemctl exits 3 for an inactive unit and 4 for an unknown one.
_SYSTEMCTL_OK: Final[frozenset[int]] = frozenset({0, 3, 4})

_UFW_RULE: Final = re.compile(
    r"""^
    (\d+)(?::(\d+))?/(tcp|udp)(\s+\(v6\))?\s+
    (?:on\s+(.+?)\s+)?
    (?:ALLOW\sIN|ALLOW)\s+
    (.+?)
    (?:\s+(\(v6\)))?
    $""",
    re.VERBOSE,
)


def _no_slash(value: object) -> str | None:
    return "it must not contain a '/' character" if "/" in str(value) else None


def _failed_lookup(argv: tuple[str, ...], result: CommandResult) -> Step:
    detail = result.error or result.stderr.strip()
    return Step.errored(f"command '{' '.join(argv)}' failed", (detail,) if detail else ())


@register_check()
class SystemdCheck(Check):
    """Whether a systemd unit is running, stopped or absent."""

    check_type = "systemd"
    schema = ParameterSchema(
        (
            Parameter("service", as_string, required=True, predicates=(non_empty(), _no_slash)),
            Parameter(
                "state", as_string, predicates=(one_of("running", "stopped", "missing"),)
            ),
        )
    )

    @property
    def argv(self) -> tuple[str, ...]:
        return ("systemctl", "status", str(self.spec.params["service"]), "--no-pager")

    def describe(self) -> str:
        return f"Service '{self.spec.params['service']}' is {self.spec.get('state', 'running')}"

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.argv),)

    async def run(self, context: CheckContext) -> list[Step]:
        result = await context.lookup(self.argv)
        if result.error is not None or result.exit_code not in _SYSTEMCTL_OK:
            return [_failed_lookup(self.argv, result)]

        lines = result.stdout_lines
        if not lines or any("Loaded: not-found" in line for line in lines):
            actual = "missing"
        elif any("Active: active" in line for line in lines):
            actual = "running"
        else:
            actual = "stopped"

        if actual == self.spec.get("state", "running"):
            return [Step.passed(f"it is {actual}")]
        return [Step.failed(f"it is {actual}")]


@register_check()
class UserCheck(Check):
    """A local account, its login shell and its group memberships."""

    check_type = "user"
    schema = ParameterSchema(
        (
            Parameter("user", as_string, required=True, predicates=(non_empty(),)),
            Parameter("state", as_string, predicates=(one_of("present", "missing"),)),
            Parameter("login_shell", as_string, predicates=(non_empty(),)),
            Parameter(
                "groups",
                as_string_array,
                predicates=(no_empty_items("group names must not be empty"),),
            ),
        )
    )

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        if values.get("state") == "missing":
            for key in ("login_shell", "groups"):
                if key in table:
                    errors.conflict(key, "state", "missing")

    @property
    def user(self) -> str:
        return str(self.spec.params["user"])

    @property
    def groups(self) -> tuple[str, ...]:
        groups = self.spec.get("groups")
        return groups if isinstance(groups, tuple) else ()

    def describe(self) -> str:
        if self.spec.get("state") == "missing":
            return f"User '{self.user}' does not exist"
        text = f"User '{self.user}' exists"
        shell = self.spec.get("login_shell")
        if shell is not None:
            text += f" with login shell '{shell}'"
        if self.groups:
            text += " and is a member of groups " + " and ".join(f"'{g}'" for g in self.groups)
        return text

    def properties(self) -> tuple[DataPoint, ...]:
        return (
            DataPoint("user", self.user),
            *(DataPoint("group", group) for group in self.groups),
        )

    async def run(self, context: CheckContext) -> list[Step]:
        return await asyncio.to_thread(self._inspect)

    def _inspect(self) -> list[Step]:
        try:
            entry = pwd.getpwnam(self.user)
        except KeyError:
            entry = None

        if self.spec.get("state") == "missing":
            if entry is None:
                return [Step.passed("user is missing")]
            return [Step.failed("user exists")]
        if entry is None:
            return [Step.failed("user is missing")]

        steps = [Step.passed("user exists")]
        if self.groups:
            member_of = _group_names(entry.pw_name, entry.pw_gid)
            for group in self.groups:
                if group in member_of:
                    steps.append(Step.passed(f"user is member of group '{group}'"))
                else:
                    steps.append(Step.failed(f"user is not member of group '{group}'"))

        shell = self.spec.get("login_shell")
        if shell is not None:
            if entry.pw_shell == shell:
                steps.append(Step.passed("user has correct login shell"))
            else:
                steps.append(Step.failed("user has different login shell"))
        return steps


@register_check()
class GroupCheck(Check):
    """Whether a local group exists."""

    check_type = "group"
    schema = ParameterSchema(
        (
            Parameter("group", as_string, required=True, predicates=(non_empty(),)),
            Parameter("state", as_string, predicates=(one_of("present", "missing"),)),
        )
    )

    def describe(self) -> str:
        verb = "does not exist" if self.spec.get("state") == "missing" else "exists"
        return f"Group '{self.spec.params['group']}' {verb}"

    def properties(self) -> tuple[DataPoint, ...]:
        return (DataPoint("group", str(self.spec.params["group"])),)

    async def run(self, context: CheckContext) -> list[Step]:
        exists = await asyncio.to_thread(_group_exists, str(self.spec.params["group"]))
        if self.spec.get("state") == "missing":
            return [Step.failed("it exists") if exists else Step.passed("it is missing")]
        return [Step.passed("it exists") if exists else Step.failed("it is missing")]


@register_check()
class DefaultsCheck(Check):
    """A macOS user-defaults value read with ``defaults read``."""

    check_type = "defaults"
    schema = ParameterSchema(
        (
            Parameter("domain", as_string, predicates=(non_empty(),)),
            Parameter("file", as_string, predicates=(non_empty(),)),
            Parameter("key", as_string, required=True, predicates=(non_empty(),)),
            Parameter("value", as_string_or_integer),
            Parameter("state", as_string, predicates=(one_of("present", "absent"),)),
        )
    )

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        if "domain" in table and "file" in table:
            errors.conflict("domain", "file")
        elif "domain" not in table and "file" not in table:
            errors.missing("domain")
        if values.get("state") == "absent":
            if "value" in table:
                errors.conflict("value", "state", "absent")
        elif "value" not in table:
            errors.missing("value")

    @property
    def place(self) -> str:
        return str(self.spec.get("domain") or self.spec.get("file"))

    @property
    def argv(self) -> tuple[str, ...]:
        return ("defaults", "read", self.place, str(self.spec.params["key"]))

    def describe(self) -> str:
        location = f"{self.place}/{self.spec.params['key']}"
        if self.spec.get("state") == "absent":
            return f"Defaults value '{location}' is absent"
        return f"Defaults value '{location}' is '{self.spec.get('value')}'"

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.argv),)

    async def run(self, context: CheckContext) -> list[Step]:
        plist = self.spec.get("file")
        if plist is not None and not context.resolve_path(str(plist)).exists():
            return [Step.failed("plist file does not exist!")]

        result = await context.lookup(self.argv)
        if result.error is not None or result.exit_code not in (0, 1):
            return [_failed_lookup(self.argv, result)]

        lines = result.stdout_lines
        got = lines[0].strip() if result.exit_code == 0 and lines else None

        if self.spec.get("state") == "absent":
            if got is not None:
                return [Step.failed("a value is present")]
            return [Step.passed("value is missing")]
        if got is None:
            return [Step.failed("value is missing")]
        if got == str(self.spec.get("value")):
            return [Step.passed("the value matches")]
        return [Step.failed(f"values do not match; got '{got}'")]


@register_check()
class UfwCheck(Check):
    """A rule in the uncomplicated firewall's status listing."""

    check_type = "ufw"
    schema = ParameterSchema(
        (
            Parameter("port", as_integer, required=True, predicates=(in_range(1, 65535),)),
            Parameter("protocol", as_string, required=True, predicates=(one_of("tcp", "udp"),)),
            Parameter("ipv6", as_boolean),
            Parameter("state", as_string, predicates=(one_of("present", "missing"),)),
            Parameter("allow", as_string, predicates=(non_empty(),)),
        )
    )
    listing = ("ufw", "status", "verbose")

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        if values.get("state") == "missing":
            if "allow" in table:
                errors.conflict("allow", "state", "missing")
        elif "allow" not in table:
            errors.missing("allow")

    def describe(self) -> str:
        protocol = str(self.spec.params["protocol"]).upper()
        text = f"Rule for {protocol} port '{self.spec.params['port']}'"
        if self.spec.get("ipv6"):
            text += " (IPv6)"
        if self.spec.get("state") == "missing":
            return text + " does not exist"
        return text + f" exists with allow '{self.spec.get('allow')}'"

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.listing),)

    def properties(self) -> tuple[DataPoint, ...]:
        return (DataPoint("port", str(self.spec.params["port"])),)

    def find_rule(self, lines: list[str]) -> str | None:
        """Return the ``Allow`` column of the matching rule, if there is one."""

        port = int(self.spec.params["port"])  # type: ignore[call-overload]
        protocol = self.spec.params["protocol"]
        ipv6 = bool(self.spec.get("ipv6"))
        for line in lines:
            match = _UFW_RULE.match(line.strip())
            if match is None or match.group(3) != protocol:
                continue
            low = int(match.group(1))
            high = int(match.group(2)) if match.group(2) else low
            is_v6 = bool(match.group(4) or match.group(7))
            if low <= port <= high and is_v6 == ipv6:
                return match.group(6).strip()
        return None

    async def run(self, context: CheckContext) -> list[Step]:
        result = await context.lookup(self.listing, option_key="ufw.output")
        if not result.succeeded:
            return [_failed_lookup(self.listing, result)]

        allow = self.find_rule(result.stdout_lines)
        if self.spec.get("state") == "missing":
            if allow is not None:
                return [Step.failed("rule exists")]
            return [Step.passed("rule missing")]
        if allow is None:
            return [Step.failed("rule missing")]
        if allow == self.spec.get("allow"):
            return [Step.passed("rule exists"), Step.passed("Allow matches")]
        return [Step.passed("rule exists"), Step.failed(f"Allow is '{allow}'")]


def _group_names(user: str, primary_gid: int) -> set[str]:
    names: set[str] = set()
    for gid in os.getgrouplist(user, primary_gid):
        try:
            names.add(grp.getgrgid(gid).gr_name)
        except KeyError:
            continue
    return names


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
    except KeyError:
        return False
    return True


__all__ = ["DefaultsCheck", "GroupCheck", "SystemdCheck", "UfwCheck", "UserCheck"]
