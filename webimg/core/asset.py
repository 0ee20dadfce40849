"""Asset descriptor: every destination path for one source file, computed from roots and profiles."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from webimg.core.file_extensions import (
    IMAGE_CONVERSIONS,
    IMAGE_EXTENSIONS,
    VIDEO_CONVERSIONS,
    VIDEO_EXTENSIONS,
    VIDEO_PREVIEW_EXTENSION,
    VIDEO_PREVIEW_EXTENSION_HDR,
)
from webimg.core.io_utils import lexists
from webimg.models.entities import DEFAULT_PROFILES, AssetKind, AssetMetadata, OutputProfile

MEDIA_DIRNAME = "media"
ORIGINAL_DIRNAME = "original"
CONVERTED_DIRNAME = "converted"
# Separator between the source relative path and the derived extension ("a.heic__.jpg").
DERIVED_SEPARATOR = "__"


class MissingHDRFlagError(ValueError):
    """Preview destination requested before the video was classified."""


@dataclass(eq=False)
class Asset:
    """
    Descriptor for one live source file.

    rel_path is the index key ("/"-separated, relative to input_root). All *_dest properties are
    pure functions of rel_path, output_root and the profile; only the is_* helpers touch the disk.
    """

    rel_path: str
    input_root: Path
    output_root: Path
    index_id: int
    metadata: AssetMetadata | None = None
    processed: bool = False
    profiles: tuple[OutputProfile, ...] = field(default=DEFAULT_PROFILES)

    def __post_init__(self) -> None:
        self.rel_path = self.rel_path.replace("\\", "/").lstrip("/")
        self.input_root = Path(self.input_root)
        self.output_root = Path(self.output_root)
        self.profiles = tuple(self.profiles)

    # --- Source ---

    @property
    def path(self) -> Path:
        return self.input_root.joinpath(*self.rel_path.split("/"))

    @property
    def extension(self) -> str:
        return os.path.splitext(self.rel_path)[1].lower()

    @property
    def is_image(self) -> bool:
        return self.extension in IMAGE_EXTENSIONS

    @property
    def is_video(self) -> bool:
        return self.extension in VIDEO_EXTENSIONS

    @property
    def kind(self) -> AssetKind | None:
        if self.is_image:
            return AssetKind.image
        if self.is_video:
            return AssetKind.video
        return None

    @property
    def needs_conversion(self) -> bool:
        if self.is_video:
            return self.extension in VIDEO_CONVERSIONS
        if self.is_image:
            return self.extension in IMAGE_CONVERSIONS
        return False

    @property
    def converted_extension(self) -> str:
        if self.is_video:
            return VIDEO_CONVERSIONS.get(self.extension, self.extension)
        if self.is_image:
            return IMAGE_CONVERSIONS.get(self.extension, self.extension)
        return self.extension

    @property
    def is_valid_to_process(self) -> bool:
        """Auto-generated Live Photo companion clips are skipped; other recognized types are processed."""
        if self.is_video:
            return not (self.metadata is not None and self.metadata.live_photo_auto)
        return self.is_image

    # --- Destinations ---

    @property
    def media_root(self) -> Path:
        return self.output_root / MEDIA_DIRNAME

    def _under(self, base: Path, rel: str) -> Path:
        return base.joinpath(*rel.split("/"))

    @property
    def dest_rel_path(self) -> str:
        """Relative path of web-ready renditions; converted sources carry the new extension."""
        if self.needs_conversion:
            return f"{self.rel_path}{DERIVED_SEPARATOR}{self.converted_extension}"
        return self.rel_path

    @property
    def conversion_dest(self) -> Path:
        return self._under(
            self.media_root / CONVERTED_DIRNAME,
            f"{self.rel_path}{DERIVED_SEPARATOR}{self.converted_extension}",
        )

    @property
    def original_dest(self) -> Path:
        return self._under(self.media_root / ORIGINAL_DIRNAME, self.rel_path)

    @property
    def web_source(self) -> Path:
        """File renditions are made from: the converted copy when conversion applies, else the source."""
        return self.conversion_dest if self.needs_conversion else self.path

    def resize_dest(self, profile: OutputProfile) -> Path:
        return self._under(self.media_root / profile.name, self.dest_rel_path)

    def preview_dest(self, profile: OutputProfile, hdr: bool | None = None) -> Path:
        """Preview frame destination; HDR previews are PNG. Raises MissingHDRFlagError before classification."""
        if hdr is None:
            hdr = self.metadata.hdr if self.metadata is not None else None
        if hdr is None:
            raise MissingHDRFlagError(
                f"Unable to determine video preview destination for {self.rel_path}: missing HDR flag"
            )
        ext = VIDEO_PREVIEW_EXTENSION_HDR if hdr else VIDEO_PREVIEW_EXTENSION
        return self._under(self.media_root / profile.name, f"{self.rel_path}{DERIVED_SEPARATOR}{ext}")

    def relocated_path(self, relocate_root: Path) -> Path:
        return self._under(Path(relocate_root), self.dest_rel_path)

    # --- Profile applicability ---

    def can_resize_to(self, profile: OutputProfile) -> bool:
        if self.is_video:
            return profile.video_height is not None
        if self.is_image:
            return profile.image_height is not None
        return False

    def resize_profiles(self) -> list[OutputProfile]:
        return [p for p in self.profiles if self.can_resize_to(p)]

    def preview_profiles(self) -> list[OutputProfile]:
        if not self.is_video:
            return []
        return [p for p in self.profiles if p.image_height is not None and p.preview]

    # --- Existence checks ---

    def is_converted(self) -> bool:
        return lexists(self.conversion_dest)

    def is_original_linked(self) -> bool:
        return lexists(self.original_dest)

    def is_resized_to(self, profile: OutputProfile) -> bool:
        return lexists(self.resize_dest(profile))

    def is_preview_generated(self, profile: OutputProfile) -> bool:
        return lexists(self.preview_dest(profile))

    def expected_paths(self) -> set[Path]:
        """
        Every derived path this asset owns under the media root.

        Both preview variants are kept while the HDR flag is unknown so an undetermined
        classification never deletes a preview made on an earlier run.
        """
        paths = {self.original_dest}
        if self.needs_conversion:
            paths.add(self.conversion_dest)
        for profile in self.resize_profiles():
            paths.add(self.resize_dest(profile))
        hdr = self.metadata.hdr if self.metadata is not None else None
        for profile in self.preview_profiles():
            if hdr is None:
                paths.add(self.preview_dest(profile, hdr=True))
                paths.add(self.preview_dest(profile, hdr=False))
            else:
                paths.add(self.preview_dest(profile, hdr=hdr))
        return paths

    def __str__(self) -> str:
        return self.rel_path
