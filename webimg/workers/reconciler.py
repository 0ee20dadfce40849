"""Reconciliation worker: walks the input root on a worker thread and applies the scan to the index."""

import fnmatch
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Union

from webimg.core.file_extensions import SUPPORTED_EXTENSIONS
from webimg.repository.index_repo import FileIndexRepository, ReconcileStats

STATS_INTERVAL = 1_000

_log = logging.getLogger(__name__)


class ScanError(RuntimeError):
    """A directory under the input root could not be listed."""


class ReconcileError(RuntimeError):
    """The reconciliation worker reported failure. Fatal for a run."""


# --- Messages (worker -> controller) ---


@dataclass(frozen=True)
class ReconcileLog:
    message: str


@dataclass(frozen=True)
class ReconcileComplete:
    stats: ReconcileStats


@dataclass(frozen=True)
class ReconcileFailed:
    message: str
    error: BaseException | None = None


ReconcileMessage = Union[ReconcileLog, ReconcileComplete, ReconcileFailed]


@dataclass(frozen=True)
class ReconcileRequest:
    """Work description handed to the worker."""

    db_path: Path
    input_root: Path
    exclude: tuple[str, ...] = field(default_factory=tuple)


def _pattern_variants(pattern: str) -> list[str]:
    """A leading "**/" also matches zero directories, as in globstar."""
    pattern = pattern.lower().strip("/")
    variants = [pattern]
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        variants.append(pattern)
    return variants


def _is_excluded(rel_path: str, patterns: tuple[str, ...]) -> bool:
    """Case-insensitive shell-style match of a "/"-separated relative path."""
    lowered = rel_path.lower()
    return any(fnmatch.fnmatchcase(lowered, v) for p in patterns for v in _pattern_variants(p))


def _mtime_ms(stat: os.stat_result) -> int:
    return stat.st_mtime_ns // 1_000_000


def _scan_dir(
    current_dir: Path,
    input_root: Path,
    exclude: tuple[str, ...],
    found: dict[str, int],
    on_progress: Callable[[int], None] | None = None,
) -> None:
    """
    Recursively walk current_dir with os.scandir; keys are "/"-separated paths relative to input_root.
    Symlinks are not followed. An unreadable directory raises ScanError so its files are never
    mistaken for deleted ones.
    """
    try:
        entries = sorted(os.scandir(current_dir), key=lambda e: e.name)
    except (PermissionError, OSError) as e:
        raise ScanError(f"Cannot list {current_dir}: {e}") from e

    for entry in entries:
        path = Path(entry.path)
        rel_path = path.relative_to(input_root).as_posix()
        if exclude and _is_excluded(rel_path, exclude):
            continue
        if entry.is_dir(follow_symlinks=False):
            _scan_dir(path, input_root, exclude, found, on_progress)
        elif entry.is_file(follow_symlinks=False):
            if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                continue
            try:
                stat = entry.stat(follow_symlinks=False)
            except FileNotFoundError:
                _log.warning("Scanner: %s vanished during scan", entry.path)
                continue
            except (PermissionError, OSError) as e:
                raise ScanError(f"Cannot stat {entry.path}: {e}") from e
            found[rel_path] = _mtime_ms(stat)
            if on_progress is not None and len(found) % STATS_INTERVAL == 0:
                on_progress(len(found))


def scan_source_tree(
    input_root: Path,
    exclude: tuple[str, ...] | list[str] = (),
    on_progress: Callable[[int], None] | None = None,
) -> dict[str, int]:
    """Return {rel_path: mtime_ms} for every supported file under input_root."""
    root = Path(input_root)
    if not root.is_dir():
        raise ScanError(f"Input root is not a directory: {root}")
    found: dict[str, int] = {}
    _scan_dir(root, root, tuple(exclude), found, on_progress)
    return found


class ReconcileWorker:
    """
    Runs scan + index reconciliation on its own thread and reports over a queue: any number of
    ReconcileLog messages, then exactly one ReconcileComplete or ReconcileFailed.

    The worker opens its own connection to the index; the controller must not use the index until
    wait() returns.
    """

    def __init__(self, request: ReconcileRequest, channel: "queue.Queue[ReconcileMessage] | None" = None) -> None:
        self.request = request
        self._channel: "queue.Queue[ReconcileMessage]" = channel or queue.Queue()
        self._thread: threading.Thread | None = None

    def _send(self, message: ReconcileMessage) -> None:
        self._channel.put(message)

    def _run(self) -> None:
        repo: FileIndexRepository | None = None
        try:
            observed = scan_source_tree(
                self.request.input_root,
                self.request.exclude,
                on_progress=lambda n: self._send(ReconcileLog(f"Scanned {n} files...")),
            )
            self._send(ReconcileLog(f"Found {len(observed)} files under {self.request.input_root}"))
            repo = FileIndexRepository.open(self.request.db_path)
            stats = repo.apply_scan(observed, log=lambda msg: self._send(ReconcileLog(msg)))
            self._send(ReconcileComplete(stats))
        except Exception as e:
            self._send(ReconcileFailed(str(e) or e.__class__.__name__, e))
        finally:
            if repo is not None:
                repo.close()

    def start(self) -> "ReconcileWorker":
        self._thread = threading.Thread(target=self._run, name="webimg-reconcile", daemon=True)
        self._thread.start()
        return self

    def messages(self) -> Iterator[ReconcileMessage]:
        """Yield messages until (and including) the terminal one."""
        while True:
            message = self._channel.get()
            yield message
            if isinstance(message, (ReconcileComplete, ReconcileFailed)):
                return

    def wait(self, on_log: Callable[[str], None] | None = None) -> ReconcileStats:
        """Block until the terminal message; return stats or raise ReconcileError."""
        emit = on_log or _log.info
        try:
            for message in self.messages():
                if isinstance(message, ReconcileLog):
                    emit(message.message)
                elif isinstance(message, ReconcileComplete):
                    return message.stats
                elif isinstance(message, ReconcileFailed):
                    raise ReconcileError(f"Index reconciliation failed: {message.message}") from message.error
        finally:
            if self._thread is not None:
                self._thread.join(timeout=5.0)
        raise ReconcileError("Index reconciliation ended without a terminal message")


def reconcile_index(
    db_path: Path,
    input_root: Path,
    exclude: tuple[str, ...] | list[str] = (),
    on_log: Callable[[str], None] | None = None,
) -> ReconcileStats:
    """Run one reconciliation on a worker thread and wait for it."""
    request = ReconcileRequest(db_path=Path(db_path), input_root=Path(input_root), exclude=tuple(exclude))
    return ReconcileWorker(request).start().wait(on_log=on_log)
