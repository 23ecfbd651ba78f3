"""Package-manager lookups: apt, gem, npm and Homebrew formulae, casks and taps.

Every family here asks its tool for one listing of everything installed and
searches that listing, so the listing goes through the run's command cache:
it runs once no matter how many checks consult it. ``-O apt.output=...``
(and the other ``*.output`` options) replaces the listing outright.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, ClassVar

from specsheet.checks.base import Check, Step, register_check
from specsheet.checks.params import (
    Parameter,
    ParameterErrors,
    ParameterSchema,
    Predicate,
    RawTable,
    as_string,
    non_empty,
    one_of,
)

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext


def _no_slash(value: object) -> str | None:
    return "it must not contain a '/' character" if "/" in str(value) else None


def _no_whitespace(value: object) -> str | None:
    return "it must not contain whitespace" if any(c.isspace() for c in str(value)) else None


class PackageListCheck(Check):
    """Base for checks that look a name up in a tool's listing.

    Subclasses name the parameter holding the package, the listing command
    and how to find an entry in the listing; ``find`` returns the installed
    version, an empty string when the listing carries no version, or
    ``None`` when the entry is absent.
    """

    name_key: ClassVar[str]
    noun: ClassVar[str]
    listing: ClassVar[tuple[str, ...]]
    option_key: ClassVar[str]
    present_state: ClassVar[str] = "installed"
    present_text: ClassVar[str] = "installed"

    @classmethod
    def build_schema(
        cls,
        name_key: str,
        *predicates: Predicate,
        present: str = "installed",
        versioned: bool = False,
    ) -> ParameterSchema:
        parameters = [
            Parameter(name_key, as_string, required=True, predicates=(non_empty(), *predicates)),
            Parameter("state", as_string, predicates=(one_of(present, "missing"),)),
        ]
        if versioned:
            parameters.append(Parameter("version", as_string, predicates=(non_empty(),)))
        return ParameterSchema(tuple(parameters))

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        if values.get("state") == "missing" and "version" in table:
            errors.conflict("version", "state", "missing")

    @property
    def name(self) -> str:
        return str(self.spec.params[self.name_key])

    @property
    def wants_present(self) -> bool:
        return self.spec.get("state", self.present_state) == self.present_state

    def describe(self) -> str:
        text = f"{self.noun} '{self.name}'"
        version = self.spec.get("version")
        if version is not None:
            text += f" version '{version}'"
        if self.wants_present:
            return f"{text} is {self.present_text}"
        return f"{text} is not {self.present_text}"

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.listing),)

    def find(self, lines: list[str]) -> str | None:
        raise NotImplementedError

    async def run(self, context: CheckContext) -> list[Step]:
        result = await context.lookup(self.listing, option_key=self.option_key)
        if not result.succeeded:
            detail = result.error or result.stderr.strip()
            return [
                Step.errored(
                    f"command '{' '.join(self.listing)}' failed", (detail,) if detail else ()
                )
            ]

        found = self.find(result.stdout_lines)
        present = f"it is {self.present_text}"
        absent = f"it is not {self.present_text}"

        if not self.wants_present:
            return [Step.failed(present) if found is not None else Step.passed(absent)]
        if found is None:
            return [Step.failed(absent)]

        expected = self.spec.get("version")
        if expected is None:
            return [Step.passed(present)]
        if found == expected:
            return [Step.passed(f"version '{found}' is installed")]
        return [Step.failed(f"version '{found}' is installed")]


@register_check()
class AptCheck(PackageListCheck):
    check_type = "apt"
    schema = PackageListCheck.build_schema("package", _no_slash, versioned=True)
    name_key = "package"
    noun = "Package"
    listing = ("apt", "list", "--installed")
    option_key = "apt.output"

    def find(self, lines: list[str]) -> str | None:
        prefix = f"{self.name}/"
        for line in lines:
            if line.startswith(prefix):
                fields = line.split(" ")
                return fields[1] if len(fields) > 1 else ""
        return None


@register_check()
class GemCheck(PackageListCheck):
    check_type = "gem"
    schema = PackageListCheck.build_schema("gem", _no_slash, _no_whitespace)
    name_key = "gem"
    noun = "Gem"
    listing = ("gem", "list")
    option_key = "gem.output"

    def find(self, lines: list[str]) -> str | None:
        for line in lines:
            head, _, rest = line.partition(" ")
            if head == self.name:
                return rest.strip("() ")
        return None


@register_check()
class NpmCheck(PackageListCheck):
    check_type = "npm"
    schema = PackageListCheck.build_schema("package", versioned=True)
    name_key = "package"
    noun = "Package"
    listing = ("npm", "list", "-g", "--depth=0")
    option_key = "npm.output"

    def find(self, lines: list[str]) -> str | None:
        pattern = re.compile(rf"(?:^|\s){re.escape(self.name)}@(\S*)")
        for line in lines:
            match = pattern.search(line)
            if match is not None:
                return match.group(1)
        return None


class _ExactLineCheck(PackageListCheck):
    """Listings that are one bare name per line."""

    def find(self, lines: list[str]) -> str | None:
        return "" if any(line.strip() == self.name for line in lines) else None


@register_check()
class HomebrewCheck(_ExactLineCheck):
    check_type = "homebrew"
    schema = PackageListCheck.build_schema("formula", _no_slash, _no_whitespace)
    name_key = "formula"
    noun = "Formula"
    listing = ("brew", "list", "--formulae")
    option_key = "brew.output"


@register_check()
class HomebrewCaskCheck(_ExactLineCheck):
    check_type = "homebrew_cask"
    schema = PackageListCheck.build_schema("cask", _no_slash)
    name_key = "cask"
    noun = "Cask"
    listing = ("brew", "list", "--casks")
    option_key = "brew-cask.output"


@register_check()
class HomebrewTapCheck(_ExactLineCheck):
    check_type = "homebrew_tap"
    schema = PackageListCheck.build_schema("tap", present="present")
    name_key = "tap"
    noun = "Tap"
    listing = ("brew", "tap")
    option_key = "brew-tap.output"
    present_state = "present"
    present_text = "present"


__all__ = [
    "AptCheck",
    "GemCheck",
    "HomebrewCaskCheck",
    "HomebrewCheck",
    "HomebrewTapCheck",
    "NpmCheck",
    "PackageListCheck",
]
