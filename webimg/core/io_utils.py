"""IO utilities shared across the codebase."""

import logging
import os
from pathlib import Path
from typing import Callable

_log = logging.getLogger(__name__)


def file_non_empty(path: Path, *, min_bytes: int = 1) -> bool:
    """Return True if path exists and has at least min_bytes. Catches OSError."""
    try:
        return path.exists() and path.stat().st_size >= min_bytes
    except OSError:
        return False


def lexists(path: Path) -> bool:
    """True if path exists as a file, directory or symlink (including a dangling one)."""
    return os.path.lexists(path)


def tmp_path_for(dest_path: Path) -> Path:
    """Temporary sibling of dest_path that keeps the real suffix last (ffmpeg/Pillow pick format by suffix)."""
    return dest_path.with_name(f".{dest_path.stem}.tmp{dest_path.suffix}")


def atomic_write(dest_path: Path, write_fn: Callable[[Path], None]) -> None:
    """
    Write to a tmp path then atomically rename over dest_path.

    On failure the tmp file is removed and any stale dest_path is deleted too, so a retry never
    mistakes a half-written artifact for a finished one.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = tmp_path_for(dest_path)
    try:
        write_fn(tmp_path)
        tmp_path.replace(dest_path)
    except BaseException:
        if lexists(dest_path):
            dest_path.unlink(missing_ok=True)
        raise
    finally:
        if lexists(tmp_path):
            tmp_path.unlink(missing_ok=True)


def prune_empty_dirs(root: Path, dirs: list[Path]) -> int:
    """Remove the given directories (deepest first) when empty; never removes root. Returns count removed."""
    removed = 0
    for d in sorted(set(dirs), key=lambda p: len(p.parts), reverse=True):
        if d == root:
            continue
        try:
            if d.is_dir() and not d.is_symlink() and not any(d.iterdir()):
                d.rmdir()
                removed += 1
        except OSError as e:
            _log.warning("Could not remove empty dir %s: %s", d, e)
    return removed
