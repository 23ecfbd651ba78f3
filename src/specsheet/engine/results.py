"""Run summaries: per-round aggregation of check results in completion order."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from specsheet.checks.base import CheckResult


@dataclass(frozen=True, slots=True)
class Stats:
    """Counts shown in summaries and in the ``stats`` record."""

    check_count: int = 0
    pass_count: int = 0
    fail_count: int = 0
    err_count: int = 0

    def __add__(self, other: Stats) -> Stats:
        return Stats(
            check_count=self.check_count + other.check_count,
            pass_count=self.pass_count + other.pass_count,
            fail_count=self.fail_count + other.fail_count,
            err_count=self.err_count + other.err_count,
        )

    @property
    def failed(self) -> bool:
        return self.fail_count > 0

    def to_dict(self) -> dict[str, int]:
        return {
            "check-count": self.check_count,
            "pass-count": self.pass_count,
            "fail-count": self.fail_count,
            "err-count": self.err_count,
        }


@dataclass(slots=True)
class RunSummary:
    """Results of one round, appended by the single aggregating consumer."""

    round_number: int = 1
    results: list[CheckResult] = field(default_factory=list)
    read_error_count: int = 0
    cancelled: bool = False

    def add(self, result: CheckResult) -> None:
        self.results.append(result)

    @property
    def stats(self) -> Stats:
        passed = sum(1 for result in self.results if result.passed)
        return Stats(
            check_count=len(self.results),
            pass_count=passed,
            fail_count=len(self.results) - passed,
            err_count=self.read_error_count,
        )

    @property
    def failed(self) -> bool:
        return any(not result.passed for result in self.results)

    def counts_by_type(self) -> dict[str, tuple[int, int]]:
        """``type -> (passes, failures)``, in lexical type order."""

        passes: Counter[str] = Counter()
        failures: Counter[str] = Counter()
        for result in self.results:
            (passes if result.passed else failures)[result.check_type] += 1
        return {
            check_type: (passes[check_type], failures[check_type])
            for check_type in sorted(passes.keys() | failures.keys())
        }


def total_stats(summaries: Iterable[RunSummary]) -> Stats:
    total = Stats()
    for summary in summaries:
        total = total + summary.stats
    return total


__all__ = ["RunSummary", "Stats", "total_stats"]
