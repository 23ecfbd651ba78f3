"""Substitution of parameter values for running checks against another environment.

A rule is written ``THIS->THAT``. Its kind follows from the match string:

- ``http://...`` or ``https://...`` rewrites URLs that start with it;
- ``/...`` or ``~...`` rewrites paths under it, a whole path component at a
  time, after expanding ``~`` on both sides;
- anything else (host names, ``%iface`` interface names) rewrites a value
  only when the whole value is equal to it.

Each string value is offered to the rules in order; the first rule that
matches rewrites it and no other rule is tried, so ``A->B`` followed by
``B->C`` turns ``A`` into ``B``.
"""

from __future__ import annotations

import os
import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from specsheet.checks.base import CheckSpec
from specsheet.errors import ArgumentError

_SEPARATOR: Final[str] = "->"
_URL_SCHEMES: Final[tuple[str, ...]] = ("http://", "https://")
_PATH_STARTS: Final[tuple[str, ...]] = ("/", "~")


class RuleKind(StrEnum):
    URL = "url"
    PATH = "path"
    EXACT = "exact"


@dataclass(frozen=True, slots=True)
class RewriteRule:
    match: str
    replacement: str
    kind: RuleKind

    @classmethod
    def create(cls, match: str, replacement: str) -> RewriteRule:
        if match.startswith(_URL_SCHEMES):
            kind = RuleKind.URL
        elif match.startswith(_PATH_STARTS):
            kind = RuleKind.PATH
        else:
            kind = RuleKind.EXACT
        return cls(match, replacement, kind)

    @classmethod
    def parse(cls, text: str) -> RewriteRule:
        match, sep, replacement = text.partition(_SEPARATOR)
        if not sep or not match:
            raise ArgumentError(f"Invalid rewrite {text!r} (expected THIS->THAT)")
        return cls.create(match, replacement)

    def apply(self, value: str) -> str | None:
        """The rewritten value, or ``None`` when this rule does not match."""

        if self.kind is RuleKind.EXACT:
            return self.replacement if value == self.match else None
        if self.kind is RuleKind.URL:
            if value.startswith(self.match):
                return self.replacement + value[len(self.match):]
            return None

        rest = _path_remainder(os.path.expanduser(value), os.path.expanduser(self.match))
        if rest is None:
            return None
        return posixpath.join(self.replacement, rest) if rest else self.replacement


@dataclass(frozen=True, slots=True)
class Rewrites:
    rules: tuple[RewriteRule, ...] = ()

    @classmethod
    def parse(cls, texts: Iterable[str]) -> Rewrites:
        return cls(tuple(RewriteRule.parse(text) for text in texts))

    def __bool__(self) -> bool:
        return bool(self.rules)

    def rewrite(self, value: str) -> str:
        for rule in self.rules:
            rewritten = rule.apply(value)
            if rewritten is not None:
                return rewritten
        return value

    def apply(self, spec: CheckSpec) -> CheckSpec:
        """A copy of ``spec`` with every string-valued parameter rewritten."""

        if not self.rules:
            return spec
        rewritten = {key: self._rewrite_any(value) for key, value in spec.params.items()}
        return spec.with_params(rewritten)

    def _rewrite_any(self, value: object) -> object:
        if isinstance(value, str):
            return self.rewrite(value)
        if isinstance(value, tuple) and all(isinstance(item, str) for item in value):
            return tuple(self.rewrite(item) for item in value)
        if isinstance(value, Mapping) and all(isinstance(item, str) for item in value.values()):
            return {key: self.rewrite(item) for key, item in value.items()}
        return value


def _path_remainder(path: str, prefix: str) -> str | None:
    """What follows ``prefix`` in ``path``, matching whole components only."""

    base = prefix.rstrip("/")
    if not base:
        return path.lstrip("/") if path.startswith("/") else None
    if path.rstrip("/") == base:
        return ""
    if path.startswith(base + "/"):
        return path[len(base) + 1 :]
    return None


__all__ = ["RewriteRule", "Rewrites", "RuleKind"]
