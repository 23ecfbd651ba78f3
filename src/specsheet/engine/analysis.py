"""Post-run correlation of failures with the data points checks share.

A data point (a path, user, group or port) correlates with failure when every
check involving it failed. Only such points are reported.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final

from specsheet.checks.base import CheckResult, DataPoint

_KIND_ORDER: Final[dict[str, int]] = {"path": 0, "user": 1, "group": 2, "port": 3}


@dataclass(frozen=True, slots=True)
class Correlation:
    point: DataPoint
    count: int

    def render(self) -> str:
        return f"- Failures {self.point} (×{self.count}, with 0 successes)"


@dataclass(slots=True)
class _Tally:
    passes: int = 0
    fails: int = 0


@dataclass(slots=True)
class AnalysisTable:
    """Indexes results by data point and pass/fail."""

    _tallies: dict[DataPoint, _Tally] = field(default_factory=dict)

    def add(self, properties: Iterable[DataPoint], passed: bool) -> None:
        for point in properties:
            tally = self._tallies.setdefault(point, _Tally())
            if passed:
                tally.passes += 1
            else:
                tally.fails += 1

    def add_results(self, results: Iterable[CheckResult]) -> None:
        for result in results:
            self.add(result.properties, result.passed)

    def correlations(self) -> list[Correlation]:
        found = [
            Correlation(point, tally.fails)
            for point, tally in self._tallies.items()
            if tally.fails and not tally.passes
        ]
        found.sort(key=_correlation_order)
        return found


def _correlation_order(correlation: Correlation) -> tuple[int, str, str]:
    point = correlation.point
    return (_KIND_ORDER.get(point.kind, len(_KIND_ORDER)), point.kind, point.value)


def render_analysis(correlations: list[Correlation]) -> list[str]:
    """Lines printed after a round that had failures."""

    if not correlations:
        return ["No correlations detected."]
    return ["", "Analysis:", *(correlation.render() for correlation in correlations)]


def analyse(results: Iterable[CheckResult]) -> list[str]:
    table = AnalysisTable()
    table.add_results(results)
    return render_analysis(table.correlations())


__all__ = ["AnalysisTable", "Correlation", "analyse", "render_analysis"]
