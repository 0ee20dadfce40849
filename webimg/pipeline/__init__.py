"""Pipeline: stage runner, the fixed stages and the run orchestration."""

from webimg.pipeline.process import RunSummary, run
from webimg.pipeline.runner import ProblemEntry, RunContext, Stage, StageRunner, WorkItem
from webimg.pipeline.toolkit import MediaToolkit

__all__ = [
    "MediaToolkit",
    "ProblemEntry",
    "RunContext",
    "RunSummary",
    "Stage",
    "StageRunner",
    "WorkItem",
    "run",
]
