"""Contents matchers: assertions about a blob of output or file data.

A matcher is written as a table in a check document::

    stdout = { regex = "^hello" }
    contents = { string = "needle", matches = false }
    body = { file = "expected.html" }
    stderr = { empty = true }
"""

from __future__ import annotations

import asyncio
import difflib
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from specsheet.checks.base import Step
from specsheet.checks.params import InvalidParameter, ParameterError

_CONDITION_KEYS: Final[tuple[str, ...]] = ("regex", "string", "file", "empty")
_ALL_KEYS: Final[frozenset[str]] = frozenset((*_CONDITION_KEYS, "matches"))


class MatcherKind(StrEnum):
    REGEX = "regex"
    STRING = "string"
    FILE = "file"
    EMPTY = "empty"
    NON_EMPTY = "non-empty"


@dataclass(frozen=True, slots=True)
class ContentsMatcher:
    kind: MatcherKind
    value: str = ""
    matches: bool = True

    def describe(self, noun: str) -> str:
        if self.kind is MatcherKind.REGEX:
            verb = "matching" if self.matches else "not matching"
            return f"{noun} {verb} regex '/{self.value}/'"
        if self.kind is MatcherKind.STRING:
            verb = "containing" if self.matches else "not containing"
            return f"{noun} {verb} '{self.value}'"
        if self.kind is MatcherKind.FILE:
            return f"{noun} matching file '{self.value}'"
        if self.kind is MatcherKind.EMPTY:
            return f"empty {noun}"
        return f"non-empty {noun}"

    async def evaluate(self, contents: bytes, title: str, *, base: Path | None = None) -> Step:
        """``check`` for callers on the event loop; expected files are read off it."""

        if self.kind is MatcherKind.FILE:
            return await asyncio.to_thread(self.check, contents, title, base=base)
        return self.check(contents, title, base=base)

    def check(self, contents: bytes, title: str, *, base: Path | None = None) -> Step:
        """Compare ``contents`` and return one step prefixed with ``title``."""

        if self.kind is MatcherKind.REGEX:
            try:
                pattern = re.compile(self.value.encode("utf-8"), re.MULTILINE)
            except re.error as exc:
                return Step.failed(f"invalid regex: '{exc}'")
            found = pattern.search(contents) is not None
            if found == self.matches:
                return Step.passed(f"{title} {'matches' if found else 'does not match'} regex")
            text = "did not match the regex" if self.matches else "matched the regex"
            return Step.failed(f"{title} {text}", _output_lines(title, contents))

        if self.kind is MatcherKind.STRING:
            found = self.value.encode("utf-8") in contents
            if found == self.matches:
                return Step.passed(f"{title} {'matches' if found else 'does not match'} string")
            text = "did not match the string" if self.matches else "matched the string"
            return Step.failed(f"{title} {text}", _output_lines(title, contents))

        if self.kind is MatcherKind.FILE:
            path = Path(self.value).expanduser()
            if base is not None and not path.is_absolute():
                path = base / path
            try:
                expected = path.read_bytes()
            except OSError as exc:
                return Step.failed(f"IO error reading file {self.value}: {exc.strerror or exc}")
            if expected == contents:
                return Step.passed(f"{title} matches file")
            return Step.failed(f"{title} did not match the file", _diff_lines(expected, contents))

        if self.kind is MatcherKind.EMPTY:
            if not contents:
                return Step.passed(f"{title} is empty")
            return Step.failed(f"{title} was not empty", _output_lines(title, contents))

        if contents:
            return Step.passed(f"{title} is non-empty")
        return Step.failed(f"{title} was empty")


def as_contents(name: str, raw: object) -> ContentsMatcher:
    """Coerce a raw table into a matcher, collecting every problem found."""

    if not isinstance(raw, Mapping):
        raise InvalidParameter(ParameterError.invalid(name, raw, "it must be a table"))

    errors: list[ParameterError] = [
        ParameterError.unknown(key) for key in sorted(raw) if key not in _ALL_KEYS
    ]

    matches = True
    if "matches" in raw:
        if isinstance(raw["matches"], bool):
            matches = raw["matches"]
        else:
            errors.append(ParameterError.invalid("matches", raw["matches"], "it must be a boolean"))

    matcher: ContentsMatcher | None = None
    condition = next((key for key in _CONDITION_KEYS if key in raw), None)
    if condition is None:
        errors.append(ParameterError.invalid(name, raw, "it must have a condition"))
    elif condition in ("regex", "string"):
        value = raw[condition]
        if not isinstance(value, str):
            errors.append(ParameterError.invalid(condition, value, "it must be a string"))
        elif not value:
            errors.append(ParameterError.invalid(name, raw, f"the {condition} must not be empty"))
        else:
            matcher = ContentsMatcher(MatcherKind(condition), value, matches)
    else:
        if "matches" in raw:
            errors.append(ParameterError.conflict("matches", condition))
        value = raw[condition]
        if condition == "file":
            if isinstance(value, str) and value:
                matcher = ContentsMatcher(MatcherKind.FILE, value)
            else:
                errors.append(
                    ParameterError.invalid("file", value, "it must be a non-empty string")
                )
        elif isinstance(value, bool):
            matcher = ContentsMatcher(MatcherKind.EMPTY if value else MatcherKind.NON_EMPTY)
        else:
            errors.append(ParameterError.invalid("empty", value, "it must be a boolean"))

    if errors or matcher is None:
        raise InvalidParameter(*errors)
    return matcher


def _output_lines(title: str, contents: bytes) -> tuple[str, ...]:
    text = contents.decode("utf-8", errors="replace")
    return (f"{title} was:", *text.splitlines())


def _diff_lines(expected: bytes, got: bytes) -> tuple[str, ...]:
    diff = difflib.unified_diff(
        expected.decode("utf-8", errors="replace").splitlines(),
        got.decode("utf-8", errors="replace").splitlines(),
        fromfile="expected",
        tofile="got",
        lineterm="",
    )
    return ("Difference between expected and got:", *diff)


__all__ = ["ContentsMatcher", "MatcherKind", "as_contents"]
