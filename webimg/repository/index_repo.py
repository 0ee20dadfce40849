"""File index repository: SQLite store of every source file seen, its mtime, metadata and processing state."""

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

from sqlalchemy import create_engine, inspect, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlmodel import SQLModel

from webimg.models.entities import AssetMetadata, IndexStatus, SourceFile

INDEX_FILENAME = "index.db"
DRY_RUN_INDEX_FILENAME = "index.dryrun.db"
SQLITE_BUSY_TIMEOUT_SECONDS = 30
# Stay well under SQLite's bound-parameter limit for IN (...) lists.
ID_CHUNK_SIZE = 500

# Columns added after the first schema, with the definition used to add them to an older index.
_COLUMN_ADDITIONS = {
    "file_mtime": "file_mtime INTEGER",
    "date": "date INTEGER",
    "metadata": "metadata TEXT",
    "exists": '"exists" INTEGER NOT NULL DEFAULT 1',
    "processed": "processed INTEGER DEFAULT 0",
    "file_date": "file_date INTEGER",
}

_log = logging.getLogger(__name__)


class IndexStoreError(RuntimeError):
    """The index database could not be created, opened or read. Fatal for a run."""


@dataclass
class ReconcileStats:
    """Counts of transitions applied by one reconciliation."""

    seen: int = 0
    inserted: int = 0
    updated: int = 0
    revived: int = 0
    tombstoned: int = 0
    migrated: int = 0
    unchanged: int = 0
    writes: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "seen": self.seen,
            "inserted": self.inserted,
            "updated": self.updated,
            "revived": self.revived,
            "tombstoned": self.tombstoned,
            "migrated": self.migrated,
            "unchanged": self.unchanged,
        }


def index_path_for(output_root: Path, dry_run: bool = False) -> Path:
    return Path(output_root) / (DRY_RUN_INDEX_FILENAME if dry_run else INDEX_FILENAME)


def prepare_index_path(output_root: Path, *, dry_run: bool = False) -> Path:
    """
    Path of the index a run should use. In dry run the real index is first copied to index.dryrun.db
    (or a stale copy removed when there is no real index yet), so nothing the run does reaches the
    real index. The copy is left on disk afterwards.
    """
    real_path = index_path_for(output_root)
    if not dry_run:
        return real_path
    copy_path = index_path_for(output_root, dry_run=True)
    try:
        copy_path.parent.mkdir(parents=True, exist_ok=True)
        if real_path.exists():
            shutil.copy2(real_path, copy_path)
        elif copy_path.exists():
            copy_path.unlink()
    except OSError as e:
        raise IndexStoreError(f"Unable to prepare dry-run index {copy_path}: {e}") from e
    _log.info("Dry run: using index copy %s", copy_path)
    return copy_path


def create_index_engine(db_path: Path) -> Engine:
    """SQLite engine for db_path; connections may be used from worker threads."""
    return create_engine(
        f"sqlite:///{Path(db_path).as_posix()}",
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS, "check_same_thread": False},
    )


def ensure_schema(engine: Engine) -> list[str]:
    """
    Create the files table when missing and add any column an older index lacks.
    Returns the names of the columns that were added.
    """
    SQLModel.metadata.create_all(engine, tables=[SourceFile.__table__])  # type: ignore[attr-defined]
    existing = {c["name"] for c in inspect(engine).get_columns(SourceFile.__tablename__)}
    added: list[str] = []
    with engine.begin() as conn:
        for name, definition in _COLUMN_ADDITIONS.items():
            if name in existing:
                continue
            conn.execute(text(f"ALTER TABLE {SourceFile.__tablename__} ADD COLUMN {definition}"))
            added.append(name)
    if added:
        _log.debug("Index schema: added missing columns %s", ", ".join(added))
    return added


def _chunks(ids: list[int], size: int = ID_CHUNK_SIZE) -> Iterator[list[int]]:
    for i in range(0, len(ids), size):
        yield ids[i : i + size]


class FileIndexRepository:
    """
    Database access for the file index.

    Reconciliation (apply_scan) is one transaction. Every other write is a single statement scoped
    to one row (or one chunk of ids), so concurrent per-asset writers only rely on SQLite serializing
    individual statements.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        db_path: Path | None = None,
        engine: Engine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.db_path = db_path
        self._engine = engine

    def close(self) -> None:
        """Release pooled connections (the index file stays on disk)."""
        if self._engine is not None:
            self._engine.dispose()

    def __enter__(self) -> "FileIndexRepository":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @classmethod
    def open(cls, db_path: Path) -> "FileIndexRepository":
        """Open (creating on demand) the index at db_path and bring its schema up to date."""
        db_path = Path(db_path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_index_engine(db_path)
            ensure_schema(engine)
        except (OSError, SQLAlchemyError) as e:
            raise IndexStoreError(f"Unable to open index {db_path}: {e}") from e
        factory = sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)
        return cls(factory, db_path, engine)

    @contextmanager
    def _session_scope(self, write: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            if write:
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise IndexStoreError(f"Index operation failed on {self.db_path}: {e}") from e
        finally:
            session.close()

    # --- Reads ---

    def list_entries(self, status: IndexStatus | None = None, limit: int | None = None) -> list[SourceFile]:
        """Return index rows ordered by path, optionally filtered by status."""
        with self._session_scope() as session:
            query = select(SourceFile)
            if status == IndexStatus.live:
                query = query.where(SourceFile.is_live == 1)
            elif status == IndexStatus.dead:
                query = query.where(SourceFile.is_live == 0)
            elif status == IndexStatus.pending:
                query = query.where(
                    SourceFile.is_live == 1,
                    or_(SourceFile.processed == 0, SourceFile.processed.is_(None)),  # type: ignore[union-attr]
                )
            elif status == IndexStatus.processed:
                query = query.where(SourceFile.processed == 1)
            query = query.order_by(SourceFile.path)
            if limit is not None:
                query = query.limit(limit)
            return list(session.execute(query).scalars().all())

    def list_live(self) -> list[SourceFile]:
        return self.list_entries(IndexStatus.live)

    def get_entry(self, rel_path: str) -> SourceFile | None:
        with self._session_scope() as session:
            return session.execute(
                select(SourceFile).where(SourceFile.path == rel_path).order_by(SourceFile.id).limit(1)
            ).scalar_one_or_none()

    def count_by_status(self) -> dict[str, int]:
        with self._session_scope() as session:
            row = session.execute(
                text("""
                    SELECT COUNT(*),
                           COALESCE(SUM(CASE WHEN "exists" = 1 THEN 1 ELSE 0 END), 0),
                           COALESCE(SUM(CASE WHEN processed = 1 THEN 1 ELSE 0 END), 0)
                    FROM files
                """)
            ).fetchone()
        total, live, processed = (int(v or 0) for v in row) if row else (0, 0, 0)
        return {"total": total, "live": live, "dead": total - live, "processed": processed}

    # --- Per-asset writes ---

    def update_metadata(self, entry_id: int, metadata: AssetMetadata) -> None:
        with self._session_scope(write=True) as session:
            session.execute(
                text("UPDATE files SET metadata = :metadata WHERE id = :id"),
                {"metadata": metadata.to_blob(), "id": entry_id},
            )

    def update_date(self, entry_id: int, date_ms: int) -> None:
        with self._session_scope(write=True) as session:
            session.execute(
                text("UPDATE files SET date = :date WHERE id = :id"),
                {"date": int(date_ms), "id": entry_id},
            )

    def mark_processed(self, ids: Iterable[int]) -> int:
        """Set processed=1 for the given live rows. Returns number of rows changed."""
        return self._set_processed(ids, True)

    def clear_processed(self, ids: Iterable[int]) -> int:
        """Set processed=0 for the given rows. Returns number of rows changed."""
        return self._set_processed(ids, False)

    def _set_processed(self, ids: Iterable[int], value: bool) -> int:
        id_list = sorted(set(ids))
        if not id_list:
            return 0
        changed = 0
        for chunk in _chunks(id_list):
            params = {f"id{i}": v for i, v in enumerate(chunk)}
            placeholders = ", ".join(f":id{i}" for i in range(len(chunk)))
            if value:
                sql = f'UPDATE files SET processed = 1 WHERE id IN ({placeholders}) AND "exists" = 1 AND (processed IS NULL OR processed != 1)'
            else:
                sql = f"UPDATE files SET processed = 0 WHERE id IN ({placeholders}) AND (processed IS NULL OR processed != 0)"
            with self._session_scope(write=True) as session:
                result = session.execute(text(sql), params)
                changed += result.rowcount or 0
        return changed

    # --- Reconciliation ---

    def apply_scan(
        self,
        observed: dict[str, int],
        log: Callable[[str], None] | None = None,
    ) -> ReconcileStats:
        """
        Diff a full scan (rel_path -> mtime ms) against the index and apply every transition in one
        transaction:

        - seen, mtime unchanged, live: nothing
        - seen, mtime unchanged, dead: exists=1
        - seen, mtime changed: file_mtime updated, processed=0, exists=1
        - not seen, live: exists=0, processed=0 (row kept)
        - new: inserted with exists=1, processed=0, metadata NULL

        Rows that only carry the deprecated file_date adopt it as file_mtime before comparing.
        """
        emit = log or (lambda _msg: None)
        stats = ReconcileStats(seen=len(observed))
        with self._session_scope(write=True) as session:
            rows = session.execute(
                text('SELECT id, path, file_mtime, "exists", processed, file_date FROM files ORDER BY id')
            ).fetchall()
            entries: dict[str, tuple] = {}
            for row in rows:
                entries.setdefault(row[1], tuple(row))

            for rel_path, mtime in observed.items():
                entry = entries.pop(rel_path, None)
                if entry is None:
                    session.execute(
                        text("""
                            INSERT INTO files (path, file_mtime, date, metadata, "exists", processed)
                            VALUES (:path, :mtime, NULL, NULL, 1, 0)
                        """),
                        {"path": rel_path, "mtime": mtime},
                    )
                    stats.inserted += 1
                    emit(f"Added {rel_path} to index.")
                    continue

                entry_id, _, entry_mtime, exists, _processed, file_date = entry
                if file_date and not entry_mtime:
                    entry_mtime = file_date
                    session.execute(
                        text("UPDATE files SET file_mtime = :mtime WHERE id = :id"),
                        {"mtime": file_date, "id": entry_id},
                    )
                    stats.migrated += 1
                    emit(f"Updated {rel_path} in index: entry missing file_mtime, adopting file_date.")

                if entry_mtime != mtime:
                    session.execute(
                        text('UPDATE files SET file_mtime = :mtime, processed = 0, "exists" = 1 WHERE id = :id'),
                        {"mtime": mtime, "id": entry_id},
                    )
                    stats.updated += 1
                    emit(f"Updated {rel_path} in index: file mtime changed, setting processed to false.")
                elif not exists:
                    session.execute(
                        text('UPDATE files SET "exists" = 1 WHERE id = :id'),
                        {"id": entry_id},
                    )
                    stats.revived += 1
                    emit(f"Updated {rel_path} in index: file added back, setting exists to true.")
                else:
                    stats.unchanged += 1

            for rel_path, entry in entries.items():
                entry_id, exists = entry[0], entry[3]
                if exists:
                    session.execute(
                        text('UPDATE files SET "exists" = 0, processed = 0 WHERE id = :id'),
                        {"id": entry_id},
                    )
                    stats.tombstoned += 1
                    emit(f"Removed {rel_path} from index.")
        stats.writes = stats.inserted + stats.updated + stats.revived + stats.tombstoned + stats.migrated
        return stats
