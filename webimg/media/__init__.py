"""Metadata extraction (exiftool) and the typed errors of every external media tool."""

from webimg.media.errors import (
    ConverterError,
    HDRProbeError,
    LinkError,
    MetadataError,
    PreviewError,
    ResizerError,
    ToolError,
)
from webimg.media.exif import ExifSession, capture_timestamp_ms

__all__ = [
    "ConverterError",
    "ExifSession",
    "HDRProbeError",
    "LinkError",
    "MetadataError",
    "PreviewError",
    "ResizerError",
    "ToolError",
    "capture_timestamp_ms",
]
