"""One invocation of the run mode: side process, documents, rounds, teardown.

In the default mode every input is loaded first, so the run can announce its
total check count; then each input is its own section whose checks run as one
round, and its summary is printed before the next input starts.
In continual mode every input is loaded up front and the combined checks run
round after round until the run is cancelled; a document error stops the run
before anything executes.

The side process, if configured, is started before the first document and
terminated after the last round whatever happened in between.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Literal

import structlog

from specsheet.checks.execution import (
    CheckContext,
    CommandCache,
    CommandExecutor,
    GlobalOptions,
    LocalSubprocessExecutor,
    ShellRunner,
)
from specsheet.constants import STDIN_INPUT
from specsheet.engine.analysis import analyse
from specsheet.engine.results import RunSummary
from specsheet.engine.scheduler import PlannedCheck, Scheduler, SchedulerConfig
from specsheet.engine.supervisor import SideProcessConfig, SideProcessSupervisor
from specsheet.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from specsheet.engine.documents import DocumentLoader, LoadedDocument
    from specsheet.ui.reporters import Reporter


@dataclass(frozen=True, slots=True)
class RunOptions:
    inputs: tuple[str, ...]
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    directory: Literal["check", "run"] = "run"
    analysis: bool = False
    side_process: SideProcessConfig | None = None


@dataclass(slots=True)
class RunOutcome:
    """What the exit classification is derived from."""

    checks_failed: bool = False
    documents_errored: bool = False
    interrupted: bool = False
    summaries: list[RunSummary] = field(default_factory=list)


class RunSession:
    def __init__(
        self,
        options: RunOptions,
        *,
        loader: DocumentLoader,
        reporter: Reporter,
        global_options: GlobalOptions | None = None,
        executor: CommandExecutor | None = None,
        cancel_token: CancellationToken | None = None,
        stdin: IO[str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._options = options
        self._loader = loader
        self._reporter = reporter
        self._global_options = global_options if global_options is not None else GlobalOptions()
        self._executor = executor if executor is not None else LocalSubprocessExecutor()
        self._cancel_token = cancel_token or CancellationToken()
        self._stdin = stdin
        self._logger = logger or structlog.get_logger(__name__)
        self._cache = CommandCache(self._executor, self._global_options)
        self._shell = ShellRunner.from_options(self._global_options)

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    async def run(self) -> RunOutcome:
        """Run everything; ``SupervisorReadyError`` propagates after teardown."""

        outcome = RunOutcome()
        supervisor: SideProcessSupervisor | None = None
        ready: asyncio.Event | None = None
        try:
            if self._options.side_process is not None:
                supervisor = SideProcessSupervisor(
                    self._options.side_process, cancel_token=self._cancel_token
                )
                await supervisor.start()
                ready = await self._await_side_process(supervisor)

            if ready is not None or supervisor is None:
                scheduler = Scheduler(
                    self._options.scheduler, cancel_token=self._cancel_token, ready=ready
                )
                if self._options.scheduler.continual:
                    await self._run_continual(scheduler, outcome)
                else:
                    await self._run_sections(scheduler, outcome)
        finally:
            if supervisor is not None:
                await supervisor.terminate()
            self._reporter.run_finished()

        outcome.interrupted = self._cancel_token.is_cancelled
        self._logger.debug(
            "run_finished",
            checks_failed=outcome.checks_failed,
            documents_errored=outcome.documents_errored,
            interrupted=outcome.interrupted,
        )
        return outcome

    async def _await_side_process(
        self, supervisor: SideProcessSupervisor
    ) -> asyncio.Event | None:
        """The ready event, or ``None`` when the run was interrupted while waiting."""

        try:
            await supervisor.wait_ready()
        except asyncio.CancelledError:
            if not self._cancel_token.is_cancelled:
                raise
            return None
        supervisor.mark_running_checks()
        return supervisor.ready

    async def _run_sections(self, scheduler: Scheduler, outcome: RunOutcome) -> None:
        # Everything is loaded first so the run can announce its total check count.
        documents = [
            (source, self._loader.load(source, stdin=self._stdin))
            for source in self._options.inputs
        ]
        plans = [
            self._plan(loaded) if loaded.load_error is None else []
            for _, loaded in documents
        ]
        self._reporter.run_started(sum(len(planned) for planned in plans))

        for (source, loaded), planned in zip(documents, plans, strict=True):
            if self._cancel_token.is_cancelled:
                return
            if source != STDIN_INPUT:
                self._reporter.file_section(source)
            if not self._report_errors(source, loaded, outcome):
                continue
            summary = await scheduler.run_round(
                planned, self._reporter, read_error_count=len(loaded.read_errors)
            )
            self._finish_round(summary, outcome)

    async def _run_continual(self, scheduler: Scheduler, outcome: RunOutcome) -> None:
        planned: list[PlannedCheck] = []
        read_errors = 0
        for source in self._options.inputs:
            loaded = self._loader.load(source, stdin=self._stdin)
            if self._report_errors(source, loaded, outcome):
                planned.extend(self._plan(loaded))
                read_errors += len(loaded.read_errors)
        if outcome.documents_errored:
            self._logger.warning("continual_run_refused", reason="document errors")
            return

        def on_round(summary: RunSummary) -> None:
            # Only the latest round is kept; the run may go on indefinitely.
            outcome.summaries.clear()
            self._finish_round(summary, outcome)

        await scheduler.run(
            planned, self._reporter, read_error_count=read_errors, on_round=on_round
        )

    def _report_errors(self, source: str, loaded: LoadedDocument, outcome: RunOutcome) -> bool:
        """Report document errors; ``False`` when nothing in it can run."""

        if loaded.load_error is not None:
            outcome.documents_errored = True
            self._reporter.load_error(source, loaded.load_error)
            return False
        if loaded.read_errors:
            outcome.documents_errored = True
            self._reporter.read_errors(loaded.read_errors)
        return True

    def _plan(self, loaded: LoadedDocument) -> list[PlannedCheck]:
        context = CheckContext(
            executor=self._executor,
            options=self._global_options,
            shell=self._shell,
            cache=self._cache,
            working_directory=self._directory_for(loaded),
        )
        registry = self._loader.registry
        return [PlannedCheck(registry.build(spec), context) for spec in loaded.specs]

    def _directory_for(self, loaded: LoadedDocument) -> Path | None:
        if self._options.directory == "check" and loaded.source != STDIN_INPUT:
            return loaded.directory
        return None

    def _finish_round(self, summary: RunSummary, outcome: RunOutcome) -> None:
        outcome.summaries.append(summary)
        if summary.failed:
            outcome.checks_failed = True
            if self._options.analysis:
                self._reporter.analysis(analyse(summary.results))


__all__ = ["RunOptions", "RunOutcome", "RunSession"]
