"""
specsheet — run engine public API.

Purpose
- Load check documents, apply rewrites and filters, and schedule the
  resulting checks in rounds.
- Supervise the optional side process and aggregate results into stats
  and failure correlations.
"""

from specsheet.engine.analysis import AnalysisTable, Correlation, analyse, render_analysis
from specsheet.engine.documents import (
    Document,
    DocumentLoader,
    LoadedDocument,
    ReadError,
    parse_document,
    read_document,
)
from specsheet.engine.filter import CheckFilter
from specsheet.engine.results import RunSummary, Stats, total_stats
from specsheet.engine.rewrite import RewriteRule, Rewrites
from specsheet.engine.scheduler import PlannedCheck, ResultSink, Scheduler, SchedulerConfig
from specsheet.engine.session import RunOptions, RunOutcome, RunSession
from specsheet.engine.supervisor import (
    KillSignal,
    ReadinessGate,
    SideProcessConfig,
    SideProcessState,
    SideProcessSupervisor,
)

__all__ = [
    "AnalysisTable",
    "CheckFilter",
    "Correlation",
    "Document",
    "DocumentLoader",
    "KillSignal",
    "LoadedDocument",
    "PlannedCheck",
    "ReadError",
    "ReadinessGate",
    "ResultSink",
    "RewriteRule",
    "Rewrites",
    "RunOptions",
    "RunOutcome",
    "RunSession",
    "RunSummary",
    "Scheduler",
    "SchedulerConfig",
    "SideProcessConfig",
    "SideProcessState",
    "SideProcessSupervisor",
    "Stats",
    "analyse",
    "parse_document",
    "read_document",
    "render_analysis",
    "total_stats",
]
