"""Stage runner: ordered stages over the live asset set with per-asset fault isolation."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from webimg.core.asset import Asset
from webimg.media.errors import ToolError
from webimg.models.entities import OutputProfile
from webimg.pipeline.toolkit import MediaToolkit
from webimg.repository.index_repo import FileIndexRepository

_log = logging.getLogger(__name__)

# (stage name, completed, total, current item or None)
ProgressCallback = Callable[[str, int, int, str | None], None]


@dataclass(frozen=True)
class ProblemEntry:
    asset: Asset
    stage: str
    message: str


@dataclass(frozen=True)
class WorkItem:
    """One unit of stage work: an asset, optionally bound to a profile."""

    asset: Asset
    profile: OutputProfile | None = None

    def __str__(self) -> str:
        if self.profile is None:
            return self.asset.rel_path
        return f"{self.asset.rel_path} -> {self.profile.name}"


@dataclass
class StageReport:
    name: str
    total: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class RunContext:
    """
    Run-scoped accumulator handed to every stage. Only the controller thread mutates it; worker
    threads run stage actions and return results.
    """

    repo: FileIndexRepository
    toolkit: MediaToolkit
    assets: list[Asset]
    dry_run: bool = False
    relocate_root: Path | None = None
    problems: list[ProblemEntry] = field(default_factory=list)
    converted: list[Asset] = field(default_factory=list)
    resized: list[WorkItem] = field(default_factory=list)
    linked: list[Asset] = field(default_factory=list)
    committed: list[Asset] = field(default_factory=list)
    deleted: list[Path] = field(default_factory=list)
    reports: list[StageReport] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def record_problem(self, asset: Asset, stage: str, error: BaseException) -> ProblemEntry:
        entry = ProblemEntry(asset=asset, stage=stage, message=str(error) or error.__class__.__name__)
        self.problems.append(entry)
        return entry

    def has_problem(self, asset: Asset) -> bool:
        return any(p.asset is asset for p in self.problems)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


class Stage:
    """
    Base stage. Subclasses choose work items (applicability + staleness) in plan(), do the external
    action in perform() on a worker thread, and apply results in commit() on the controller thread.
    Stages without per-asset work override finish() only.
    """

    name: str = "stage"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        return []

    def failure_label(self, item: WorkItem) -> str:
        return self.name

    def intent(self, item: WorkItem) -> str:
        """Imperative description of the action, logged as "Would <intent>" in dry run."""
        return f"{self.name}: {item}"

    def done(self, item: WorkItem) -> str:
        """Past-tense description logged after the action succeeded."""
        return f"{self.name} done: {item}"

    def perform(self, ctx: RunContext, item: WorkItem) -> Any:
        raise NotImplementedError

    def commit(self, ctx: RunContext, item: WorkItem, result: Any) -> None:
        """Persist results (index writes). Not called in dry run."""

    def record(self, ctx: RunContext, item: WorkItem) -> None:
        """Update run counters for a completed item (dry run included)."""

    def finish(self, ctx: RunContext) -> None:
        """Called once after all items of this stage have completed."""


class StageRunner:
    """Runs stages in order; within a stage, items are dispatched to a bounded thread pool."""

    def __init__(
        self,
        stages: list[Stage],
        *,
        max_workers: int = 4,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.stages = list(stages)
        self.max_workers = max(1, int(max_workers))
        self._on_progress = on_progress

    def _progress(self, stage: Stage, completed: int, total: int, current: str | None) -> None:
        if self._on_progress is not None:
            self._on_progress(stage.name, completed, total, current)

    def run(self, ctx: RunContext) -> RunContext:
        for stage in self.stages:
            ctx.reports.append(self.run_stage(stage, ctx))
        return ctx

    def run_stage(self, stage: Stage, ctx: RunContext) -> StageReport:
        items = stage.plan(ctx)
        report = StageReport(name=stage.name, total=len(items))
        _log.debug("Stage %s: %d item(s)", stage.name, report.total)
        self._progress(stage, 0, report.total, None)
        if items:
            if ctx.dry_run:
                self._run_dry(stage, ctx, items, report)
            else:
                self._run_pool(stage, ctx, items, report)
        stage.finish(ctx)
        return report

    def _run_dry(self, stage: Stage, ctx: RunContext, items: list[WorkItem], report: StageReport) -> None:
        for item in items:
            _log.info("[dry run] Would %s", stage.intent(item))
            stage.record(ctx, item)
            report.completed += 1
            self._progress(stage, report.completed, report.total, str(item))

    def _run_pool(self, stage: Stage, ctx: RunContext, items: list[WorkItem], report: StageReport) -> None:
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"webimg-{stage.name}")
        try:
            futures: dict[Future, WorkItem] = {pool.submit(stage.perform, ctx, item): item for item in items}
            for future in as_completed(futures):
                item = futures[future]
                self._complete(stage, ctx, item, future, report)
                self._progress(stage, report.completed, report.total, str(item))
        except KeyboardInterrupt:
            _log.warning("Interrupted during stage %s; cancelling pending work", stage.name)
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        finally:
            pool.shutdown(wait=True)

    def _complete(
        self,
        stage: Stage,
        ctx: RunContext,
        item: WorkItem,
        future: Future,
        report: StageReport,
    ) -> None:
        report.completed += 1
        label = stage.failure_label(item)
        try:
            result = future.result()
        except ToolError as e:
            report.failed += 1
            ctx.record_problem(item.asset, label, e)
            _log.error("%s failed for %s: %s (cause: %r)", label, item.asset, e, e.__cause__)
            return
        except Exception as e:
            report.failed += 1
            ctx.record_problem(item.asset, label, e)
            _log.error("%s failed for %s: %s", label, item.asset, e, exc_info=True)
            return
        stage.commit(ctx, item, result)
        stage.record(ctx, item)
        _log.info("%s", stage.done(item))
