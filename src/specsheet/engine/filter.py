"""Selection of the checks eligible to run, by tag and by check type."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from specsheet.checks.base import CheckSpec


@dataclass(frozen=True, slots=True)
class CheckFilter:
    """Allow and deny lists for tags and types. Exclusion wins over inclusion."""

    tags: frozenset[str] = frozenset()
    skip_tags: frozenset[str] = frozenset()
    types: frozenset[str] = frozenset()
    skip_types: frozenset[str] = frozenset()

    @classmethod
    def from_lists(
        cls,
        *,
        tags: Iterable[str] = (),
        skip_tags: Iterable[str] = (),
        types: Iterable[str] = (),
        skip_types: Iterable[str] = (),
    ) -> CheckFilter:
        return cls(frozenset(tags), frozenset(skip_tags), frozenset(types), frozenset(skip_types))

    @property
    def is_empty(self) -> bool:
        return not (self.tags or self.skip_tags or self.types or self.skip_types)

    def accepts(self, check_type: str, tags: Iterable[str]) -> bool:
        if check_type in self.skip_types:
            return False
        if self.types and check_type not in self.types:
            return False
        tag_set = frozenset(tags)
        if tag_set & self.skip_tags:
            return False
        if self.tags and not tag_set & self.tags:
            return False
        return True

    def accepts_spec(self, spec: CheckSpec) -> bool:
        return self.accepts(spec.check_type, spec.tags)

    def apply(self, specs: Iterable[CheckSpec]) -> tuple[CheckSpec, ...]:
        return tuple(spec for spec in specs if self.accepts_spec(spec))


__all__ = ["CheckFilter"]
