"""SQLModel table/value definitions. The table is used by the Repository layer only."""

from webimg.models.entities import (
    DEFAULT_PROFILES,
    AssetKind,
    AssetMetadata,
    IndexStatus,
    OutputProfile,
    SourceFile,
)

__all__ = [
    "DEFAULT_PROFILES",
    "AssetKind",
    "AssetMetadata",
    "IndexStatus",
    "OutputProfile",
    "SourceFile",
]
