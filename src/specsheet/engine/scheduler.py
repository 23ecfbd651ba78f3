"""Bounded worker pool that runs one round of checks at a time.

Workers pull from a shared queue and push results onto a second queue that a
single aggregator drains; only the aggregator touches the ``RunSummary``, so
results are recorded in completion order without locking. No worker takes
its first check before the readiness event is set.
"""

from __future__ import annotations

import asyncio
import random
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from specsheet.constants import CANCEL_GRACE_SECONDS
from specsheet.engine.results import RunSummary
from specsheet.utils.concurrency import CancellationToken, sleep_or_cancel

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from specsheet.checks.base import Check, CheckResult
    from specsheet.checks.execution import CheckContext


class ResultSink(Protocol):
    """Receives round boundaries and results as they complete."""

    def round_started(self, round_number: int, check_count: int) -> None: ...

    def check_finished(self, result: CheckResult) -> None: ...

    def round_finished(self, summary: RunSummary) -> None: ...


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """How rounds are dispatched."""

    threads: int = 1
    random_order: bool = False
    continual: bool = False
    delay_seconds: float = 0.0
    cancel_grace_seconds: float = CANCEL_GRACE_SECONDS

    def __post_init__(self) -> None:
        if self.threads <= 0:
            raise ValueError("threads must be > 0")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.cancel_grace_seconds < 0:
            raise ValueError("cancel_grace_seconds must be >= 0")


@dataclass(frozen=True, slots=True)
class PlannedCheck:
    """A built check and the context it runs in."""

    check: Check
    context: CheckContext


class Scheduler:
    """Runs rounds of checks across ``threads`` concurrent workers."""

    __slots__ = ("_config", "_cancel_token", "_ready", "_rng", "_logger")

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        cancel_token: CancellationToken | None = None,
        ready: asyncio.Event | None = None,
        rng: random.Random | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config if config is not None else SchedulerConfig()
        self._cancel_token = cancel_token or CancellationToken()
        self._ready = ready
        self._rng = rng or random.Random()
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    def order(self, checks: Sequence[PlannedCheck]) -> list[PlannedCheck]:
        ordered = list(checks)
        if self._config.random_order:
            self._rng.shuffle(ordered)
        return ordered

    async def run(
        self,
        checks: Sequence[PlannedCheck],
        sink: ResultSink,
        *,
        read_error_count: int = 0,
        on_round: Callable[[RunSummary], None] | None = None,
    ) -> RunSummary:
        """Run one round, or rounds until cancelled in continual mode.

        ``on_round`` sees each round's summary as soon as it completes.
        Returns the summary of the last round that ran.
        """

        round_number = 1
        while True:
            summary = await self.run_round(
                checks, sink, round_number=round_number, read_error_count=read_error_count
            )
            if on_round is not None:
                on_round(summary)
            if not self._config.continual or summary.cancelled:
                return summary
            if not await sleep_or_cancel(self._config.delay_seconds, self._cancel_token):
                return summary
            round_number += 1

    async def run_round(
        self,
        checks: Sequence[PlannedCheck],
        sink: ResultSink,
        *,
        round_number: int = 1,
        read_error_count: int = 0,
    ) -> RunSummary:
        summary = RunSummary(round_number=round_number, read_error_count=read_error_count)
        ordered = self.order(checks)
        if round_number > 1:
            # Later continual rounds observe afresh.
            for context in {id(item.context): item.context for item in ordered}.values():
                if context.cache is not None:
                    context.cache.clear()

        sink.round_started(round_number, len(ordered))
        self._logger.debug("round_started", round=round_number, checks=len(ordered))

        work: asyncio.Queue[PlannedCheck] = asyncio.Queue()
        for item in ordered:
            work.put_nowait(item)
        results: asyncio.Queue[CheckResult | None] = asyncio.Queue()

        aggregator = asyncio.create_task(self._aggregate(results, summary, sink))
        worker_count = min(self._config.threads, len(ordered))
        workers = [
            asyncio.create_task(self._worker(index, work, results))
            for index in range(worker_count)
        ]
        await self._join_workers(workers)

        await results.put(None)
        await aggregator
        summary.cancelled = self._cancel_token.is_cancelled
        self._logger.debug(
            "round_finished",
            round=round_number,
            completed=len(summary.results),
            planned=len(ordered),
            cancelled=summary.cancelled,
        )
        sink.round_finished(summary)
        return summary

    async def _worker(
        self,
        index: int,
        work: asyncio.Queue[PlannedCheck],
        results: asyncio.Queue[CheckResult | None],
    ) -> None:
        if self._ready is not None:
            await self._ready.wait()
        paced = self._config.threads == 1 and self._config.delay_seconds > 0
        first = True
        while not self._cancel_token.is_cancelled:
            try:
                item = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            if paced and not first:
                if not await sleep_or_cancel(self._config.delay_seconds, self._cancel_token):
                    return
            first = False
            self._logger.debug("worker_took_check", worker=index, check_type=item.check.check_type)
            result = await item.check.execute(item.context)
            await results.put(result)

    async def _join_workers(self, workers: list[asyncio.Task[None]]) -> None:
        if not workers:
            return
        all_done = asyncio.gather(*workers, return_exceptions=True)
        cancel_wait = asyncio.create_task(self._cancel_token.wait())
        try:
            await asyncio.wait({all_done, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
            with suppress(asyncio.CancelledError):
                await cancel_wait

        if all_done.done():
            return

        # Interrupted: in-flight checks get a bounded grace period.
        in_flight = sum(1 for worker in workers if not worker.done())
        self._logger.warning(
            "round_interrupted",
            in_flight=in_flight,
            grace_seconds=self._config.cancel_grace_seconds,
        )
        try:
            await asyncio.wait_for(asyncio.shield(all_done), self._config.cancel_grace_seconds)
        except TimeoutError:
            abandoned = [worker for worker in workers if not worker.done()]
            self._logger.warning("checks_abandoned", count=len(abandoned))
            for worker in abandoned:
                worker.cancel()
            await all_done

    async def _aggregate(
        self,
        results: asyncio.Queue[CheckResult | None],
        summary: RunSummary,
        sink: ResultSink,
    ) -> None:
        while True:
            result = await results.get()
            if result is None:
                return
            summary.add(result)
            sink.check_finished(result)


__all__ = ["PlannedCheck", "ResultSink", "Scheduler", "SchedulerConfig"]
