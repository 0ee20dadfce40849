"""Default collaborators behind the stages: exiftool, ffmpeg/ffprobe, Pillow and the filesystem."""

import logging
import subprocess
from pathlib import Path
from typing import Any, Callable

from exiftool.exceptions import ExifToolException

from webimg.core import storage
from webimg.core.io_utils import atomic_write
from webimg.media.errors import (
    ConverterError,
    HDRProbeError,
    LinkError,
    MetadataError,
    PreviewError,
    ResizerError,
)
from webimg.media.exif import ExifSession
from webimg.video.ffmpeg import (
    FFmpegError,
    build_convert_video_cmd,
    build_preview_cmd,
    build_resize_video_cmd,
    is_hdr_color_space,
    probe_color_space,
    run_ffmpeg,
)

_log = logging.getLogger(__name__)


class MediaToolkit:
    """
    Every external action a stage may take. Each method raises a ToolError subclass on failure with
    the underlying exception as __cause__; nothing else escapes.

    Use as a context manager to hold the exiftool process open for the duration of a run.
    """

    def __init__(self, exif_session: ExifSession | None = None) -> None:
        self._exif = exif_session or ExifSession()

    def __enter__(self) -> "MediaToolkit":
        try:
            self._exif.start()
        except (ExifToolException, OSError) as e:
            # Each extraction retries the start and reports its own MetadataError.
            _log.warning("exiftool could not be started: %s", e)
        return self

    def __exit__(self, *args: object) -> None:
        self._exif.close()

    # --- Metadata ---

    def extract_metadata(self, path: Path) -> dict[str, Any]:
        try:
            return self._exif.read_tags(path)
        except (ExifToolException, OSError, ValueError, TypeError) as e:
            raise MetadataError(f"Failed to extract metadata from {path}") from e

    def classify_hdr(self, path: Path) -> bool:
        try:
            return is_hdr_color_space(probe_color_space(path))
        except (subprocess.CalledProcessError, OSError) as e:
            raise HDRProbeError(f"Failed to probe color space of {path}") from e

    # --- Conversion ---

    def convert_image(self, source: Path, dest: Path) -> None:
        try:
            storage.convert_image(source, dest)
        except (OSError, ValueError) as e:
            raise ConverterError(f"Failed to convert image {source}") from e

    def convert_video(self, source: Path, dest: Path) -> None:
        try:
            self._ffmpeg_write(dest, lambda p: build_convert_video_cmd(source, p), "Video conversion failed")
        except (FFmpegError, OSError) as e:
            raise ConverterError(f"Failed to convert video {source}") from e

    def relocate(self, artifact: Path, relocated: Path) -> None:
        try:
            storage.relocate(artifact, relocated)
        except OSError as e:
            raise ConverterError(f"Failed to relocate converted file {artifact}") from e

    # --- Renditions ---

    def resize_image(self, source: Path, dest: Path, height: int) -> None:
        try:
            storage.resize_image(source, dest, height)
        except (OSError, ValueError) as e:
            raise ResizerError(f"Failed to resize image {source} to {height}px") from e

    def resize_video(self, source: Path, dest: Path, height: int) -> None:
        try:
            self._ffmpeg_write(dest, lambda p: build_resize_video_cmd(source, p, height), "Video resize failed")
        except (FFmpegError, OSError) as e:
            raise ResizerError(f"Failed to resize video {source} to {height}px") from e

    def generate_preview(self, source: Path, dest: Path, height: int, hdr: bool) -> None:
        try:
            self._ffmpeg_write(dest, lambda p: build_preview_cmd(source, p, height, hdr), "Preview extraction failed")
        except (FFmpegError, OSError) as e:
            raise PreviewError(f"Failed to generate preview for {source}") from e

    # --- Links ---

    def link_original(self, source: Path, link: Path) -> None:
        try:
            storage.link_original(source, link)
        except OSError as e:
            raise LinkError(f"Failed to link original {source}") from e

    @staticmethod
    def _ffmpeg_write(dest: Path, build_cmd: Callable[[Path], list[str]], label: str) -> None:
        def _do_write(p: Path) -> None:
            attempt = run_ffmpeg(build_cmd(p), dest=p)
            if not attempt.ok:
                raise FFmpegError(label, attempt)

        atomic_write(dest, _do_write)
