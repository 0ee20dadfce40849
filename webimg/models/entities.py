"""SQLModel table and value definitions for the webimg file index (SQLite)."""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field as PydanticField, model_validator
from sqlalchemy import Column, Integer, Text
from sqlmodel import Field, SQLModel


class AssetKind(str, Enum):
    image = "image"
    video = "video"


class IndexStatus(str, Enum):
    """Filters for listing index rows (CLI)."""

    live = "live"
    dead = "dead"
    pending = "pending"
    processed = "processed"


# --- Tables ---


class SourceFile(SQLModel, table=True):
    """
    One row per source file ever seen under the input root.

    Columns "exists" and "metadata" keep their historic names in the DB; the Python attributes
    differ because both names clash with SQLAlchemy/SQLModel internals.
    """

    __tablename__ = "files"

    id: int | None = Field(default=None, primary_key=True)
    path: str = Field(nullable=False, index=True)
    file_mtime: int | None = Field(default=None)
    date: int | None = Field(default=None)
    file_metadata: str | None = Field(default=None, sa_column=Column("metadata", Text, nullable=True))
    is_live: int = Field(
        default=1, sa_column=Column("exists", Integer, nullable=False, server_default="1")
    )
    processed: int | None = Field(default=0)
    # Deprecated: older indexes stored the observed date here instead of file_mtime.
    file_date: int | None = Field(default=None)


# --- Values (not persisted as tables) ---


class OutputProfile(BaseModel):
    """A named rendition target. A profile with neither height produces nothing for that kind."""

    model_config = ConfigDict(frozen=True)

    name: str
    image_height: int | None = None
    video_height: int | None = None
    preview: bool = True

    @model_validator(mode="after")
    def _check(self) -> "OutputProfile":
        if not self.name or "/" in self.name or "\\" in self.name or self.name in ("original", "converted"):
            raise ValueError(f"Invalid profile name: {self.name!r}")
        for h in (self.image_height, self.video_height):
            if h is not None and h <= 0:
                raise ValueError(f"Profile {self.name!r}: heights must be positive")
        return self


DEFAULT_PROFILES: tuple[OutputProfile, ...] = (
    OutputProfile(name="large", image_height=1440, preview=False),
    OutputProfile(name="small", image_height=220),
    OutputProfile(name="thumb", image_height=120),
)


class AssetMetadata(BaseModel):
    """
    Metadata blob stored in files.metadata as JSON.

    Group names match what earlier versions wrote, so existing indexes hydrate unchanged.
    The WebImg group holds values produced by the pipeline itself (e.g. HDR classification).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file: dict[str, Any] = PydanticField(default_factory=dict, alias="File")
    quicktime: dict[str, Any] = PydanticField(default_factory=dict, alias="QuickTime")
    exif: dict[str, Any] = PydanticField(default_factory=dict, alias="EXIF")
    composite: dict[str, Any] = PydanticField(default_factory=dict, alias="Composite")
    webimg: dict[str, Any] = PydanticField(default_factory=dict, alias="WebImg")

    @classmethod
    def from_tags(cls, tags: dict[str, Any]) -> "AssetMetadata":
        """Keep the subset of extracted tags the pipeline and the web front end use."""
        return cls(
            file={
                "MIMEType": tags.get("MIMEType"),
                "FileSize": tags.get("FileSize"),
                "FileName": tags.get("FileName"),
            },
            quicktime={
                "Duration": tags.get("Duration"),
                "LivePhotoAuto": bool(tags.get("LivePhotoAuto", False)),
            },
            exif={
                "GPSAltitude": tags.get("GPSAltitude"),
                "GPSAltitudeRef": tags.get("GPSAltitudeRef"),
                "GPSLatitude": tags.get("GPSLatitude"),
                "GPSLongitude": tags.get("GPSLongitude"),
                "GPSLatitudeRef": tags.get("GPSLatitudeRef"),
                "GPSLongitudeRef": tags.get("GPSLongitudeRef"),
                "HostComputer": tags.get("HostComputer"),
                "Model": tags.get("Model"),
                "Orientation": tags.get("Orientation"),
            },
            composite={
                "ImageSize": tags.get("ImageSize"),
                "Rotation": tags.get("Rotation"),
            },
        )

    @classmethod
    def from_blob(cls, blob: str | bytes | None) -> "AssetMetadata | None":
        if blob is None:
            return None
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8")
        data = json.loads(blob)
        if not isinstance(data, dict):
            return None
        return cls.model_validate(data)

    def to_blob(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=False)

    @property
    def live_photo_auto(self) -> bool:
        return bool(self.quicktime.get("LivePhotoAuto"))

    @property
    def hdr(self) -> bool | None:
        value = self.webimg.get("HDR")
        return None if value is None else bool(value)

    def set_hdr(self, value: bool) -> None:
        self.webimg["HDR"] = bool(value)
