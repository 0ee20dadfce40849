"""One pipeline run: reconcile the index, run the stages, collect garbage, summarize."""

import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from webimg.core.asset import MEDIA_DIRNAME, Asset
from webimg.core.config import Settings
from webimg.core.maintenance import DerivedTreeCollector
from webimg.models.entities import AssetMetadata, OutputProfile, SourceFile
from webimg.pipeline.runner import ProblemEntry, ProgressCallback, RunContext, Stage, StageReport, StageRunner
from webimg.pipeline.stages import default_stages
from webimg.pipeline.toolkit import MediaToolkit
from webimg.repository.index_repo import FileIndexRepository, ReconcileStats, prepare_index_path
from webimg.workers.reconciler import ReconcileRequest, ReconcileWorker

_log = logging.getLogger(__name__)


class MissingInputRootError(RuntimeError):
    """The input root does not exist or is not a directory."""


@dataclass
class RunSummary:
    dry_run: bool
    processed: int
    converted: int
    resized: int
    linked: int
    deleted: int
    elapsed_seconds: float
    problems: list[ProblemEntry] = field(default_factory=list)
    reconcile: ReconcileStats | None = None
    stages: list[StageReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def lines(self) -> list[str]:
        lines = [
            f"Processed {self.processed} files{' (DRY RUN)' if self.dry_run else ''}",
            f"  - Converted: {self.converted} files",
            f"  - Resized: {self.resized} files",
            f"  - Linked: {self.linked} files",
            f"  - Deleted: {self.deleted} files",
            f"  - Time: {self.elapsed_seconds:.2f} seconds",
        ]
        if self.problems:
            lines.append(f"Encountered issues with {len(self.problems)} files:")
            lines.extend(f"  - {p.asset} ({p.stage})" for p in self.problems)
        return lines


def _hydrate_metadata(row: SourceFile) -> AssetMetadata | None:
    """Parse a stored metadata blob; an unreadable blob counts as absent so it is re-extracted."""
    try:
        return AssetMetadata.from_blob(row.file_metadata)
    except ValueError as e:
        _log.warning("Ignoring unreadable metadata for %s: %s", row.path, e)
        return None


def build_assets(
    rows: list[SourceFile],
    input_root: Path,
    output_root: Path,
    profiles: list[OutputProfile],
) -> list[Asset]:
    return [
        Asset(
            rel_path=row.path,
            input_root=input_root,
            output_root=output_root,
            index_id=row.id,
            metadata=_hydrate_metadata(row),
            processed=bool(row.processed),
            profiles=tuple(profiles),
        )
        for row in rows
    ]


def run(
    settings: Settings,
    *,
    toolkit: MediaToolkit | None = None,
    stages: list[Stage] | None = None,
    on_progress: ProgressCallback | None = None,
    on_log: Callable[[str], None] | None = None,
) -> RunSummary:
    """
    Execute one full run described by settings.

    Raises MissingInputRootError, ReconcileError or IndexStoreError on fatal failures; per-asset
    failures are returned in RunSummary.problems.
    """
    if not settings.input or not settings.output:
        raise ValueError("Both input and output roots are required")
    # Link targets must be absolute.
    input_root = Path(settings.input).expanduser().resolve()
    output_root = Path(settings.output).expanduser().resolve()
    relocate_root = (
        Path(settings.relocate_converted).expanduser().resolve() if settings.relocate_converted else None
    )
    dry_run = settings.dry_run
    if not input_root.is_dir():
        raise MissingInputRootError(f"Input root does not exist or is not a directory: {input_root}")
    if dry_run:
        _log.info("=== DRY RUN MODE ===")

    db_path = prepare_index_path(output_root, dry_run=dry_run)
    request = ReconcileRequest(db_path=db_path, input_root=input_root, exclude=tuple(settings.exclude))
    reconcile_stats = ReconcileWorker(request).start().wait(on_log=on_log)
    _log.info("Index reconciled: %s", reconcile_stats.as_dict())

    toolkit = toolkit or MediaToolkit()
    profiles = settings.effective_profiles()
    with FileIndexRepository.open(db_path) as repo:
        assets = build_assets(repo.list_live(), input_root, output_root, profiles)
        ctx = RunContext(
            repo=repo,
            toolkit=toolkit,
            assets=assets,
            dry_run=dry_run,
            relocate_root=relocate_root,
        )
        runner = StageRunner(
            stages if stages is not None else default_stages(),
            max_workers=settings.max_workers or 1,
            on_progress=on_progress,
        )
        # exiftool is only started for real runs
        session = contextlib.nullcontext(toolkit) if dry_run else toolkit
        with session:
            runner.run(ctx)

    collector = DerivedTreeCollector(output_root / MEDIA_DIRNAME, relocate_root)
    for report in collector.collect(ctx.assets, dry_run=dry_run):
        ctx.deleted.extend(report.deleted)

    summary = RunSummary(
        dry_run=dry_run,
        processed=len(ctx.committed),
        converted=len(ctx.converted),
        resized=len(ctx.resized),
        linked=len(ctx.linked),
        deleted=len(ctx.deleted),
        elapsed_seconds=ctx.elapsed_seconds,
        problems=list(ctx.problems),
        reconcile=reconcile_stats,
        stages=list(ctx.reports),
    )
    for line in summary.lines():
        _log.info(line)
    return summary
