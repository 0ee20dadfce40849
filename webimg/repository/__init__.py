"""Repository layer: database access only. No ORM calls in business logic."""

from webimg.repository.index_repo import (
    FileIndexRepository,
    IndexStoreError,
    ReconcileStats,
    ensure_schema,
    index_path_for,
    prepare_index_path,
)

__all__ = [
    "FileIndexRepository",
    "IndexStoreError",
    "ReconcileStats",
    "ensure_schema",
    "index_path_for",
    "prepare_index_path",
]
