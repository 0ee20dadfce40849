"""Derived-tree garbage collection: delete every output file no live source accounts for."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from webimg.core.asset import Asset
from webimg.core.io_utils import prune_empty_dirs

_log = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    root: Path
    scanned: int = 0
    deleted: list[Path] = field(default_factory=list)
    pruned_dirs: int = 0


def _walk(root: Path, files: list[Path], dirs: list[Path]) -> None:
    """Collect files and symlinks (dangling included) under root. Symlinked directories are not entered."""
    try:
        entries = list(os.scandir(root))
    except FileNotFoundError:
        return
    for entry in entries:
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            dirs.append(path)
            _walk(path, files, dirs)
        else:
            files.append(path)


def cleanup_tree(root: Path, keep: set[Path], *, dry_run: bool = False) -> CleanupReport:
    """
    Delete everything under root that is not in keep, then prune directories left empty.
    In dry run, only report what would be deleted.
    """
    root = Path(root)
    report = CleanupReport(root=root)
    if not root.is_dir():
        return report
    files: list[Path] = []
    dirs: list[Path] = []
    _walk(root, files, dirs)
    report.scanned = len(files)
    for path in sorted(files):
        if path in keep:
            continue
        if dry_run:
            _log.info("[dry run] Would delete %s", path)
            report.deleted.append(path)
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            _log.warning("Could not delete %s: %s", path, e)
            continue
        _log.info("Deleted %s", path)
        report.deleted.append(path)
    if not dry_run:
        report.pruned_dirs = prune_empty_dirs(root, dirs)
    return report


class DerivedTreeCollector:
    """
    Keeps <output>/media (and the relocation root, when used) in step with the live asset set.

    Runs after all stages so newly produced artifacts are already on disk and accounted for.
    """

    def __init__(self, media_root: Path | str, relocate_root: Path | str | None = None) -> None:
        self._media_root = Path(media_root)
        self._relocate_root = Path(relocate_root) if relocate_root is not None else None

    @staticmethod
    def media_keep_set(assets: Iterable[Asset]) -> set[Path]:
        keep: set[Path] = set()
        for asset in assets:
            keep.update(asset.expected_paths())
        return keep

    def relocated_keep_set(self, assets: Iterable[Asset]) -> set[Path]:
        if self._relocate_root is None:
            return set()
        return {a.relocated_path(self._relocate_root) for a in assets if a.needs_conversion}

    def collect(self, assets: list[Asset], *, dry_run: bool = False) -> list[CleanupReport]:
        reports = [cleanup_tree(self._media_root, self.media_keep_set(assets), dry_run=dry_run)]
        if self._relocate_root is not None:
            reports.append(
                cleanup_tree(self._relocate_root, self.relocated_keep_set(assets), dry_run=dry_run)
            )
        for r in reports:
            _log.info(
                "Cleanup of %s: %d file(s) scanned, %d %s, %d empty dir(s) removed",
                r.root,
                r.scanned,
                len(r.deleted),
                "would be deleted" if dry_run else "deleted",
                r.pruned_dirs,
            )
        return reports
