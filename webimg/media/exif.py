"""Metadata extraction through a long-lived exiftool process (PyExifTool)."""

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException

_log = logging.getLogger(__name__)

# Capture-date candidates, most trustworthy first.
DATE_TAG_PRIORITY = ("DateTimeOriginal", "ModifyDate", "CreationDate", "CreateDate", "DateCreated")

# Apple writes the auto Live Photo marker under either name depending on the container.
LIVE_PHOTO_AUTO_TAGS = ("LivePhotoAuto", "Live-photoAuto")

_EXIF_DATE_RE = re.compile(
    r"^(?P<y>\d{4}):(?P<mo>\d{2}):(?P<d>\d{2})"
    r"(?:[ T](?P<h>\d{2}):(?P<mi>\d{2})(?::(?P<s>\d{2})(?:\.(?P<frac>\d+))?)?)?"
    r"\s*(?P<tz>Z|[+-]\d{2}:?\d{2})?\s*$"
)


def normalize_tags(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Strip exiftool group prefixes ("EXIF:Model" -> "Model"). When two groups carry the same tag
    the first one reported wins.
    """
    tags: dict[str, Any] = {}
    for key, value in raw.items():
        name = key.rsplit(":", 1)[-1]
        if name not in tags:
            tags[name] = value
    tags["LivePhotoAuto"] = any(_as_int(tags.get(name)) == 1 for name in LIVE_PHOTO_AUTO_TAGS)
    return tags


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_exif_datetime(value: Any) -> int | None:
    """
    Parse an exif date ("2021:07:04 12:34:56.120+02:00") into ms since epoch.

    Values without a zone are read as UTC. Zeroed or malformed dates return None.
    """
    if not isinstance(value, str):
        return None
    m = _EXIF_DATE_RE.match(value.strip())
    if not m:
        return None
    try:
        frac = m.group("frac") or "0"
        dt = datetime(
            int(m.group("y")),
            int(m.group("mo")),
            int(m.group("d")),
            int(m.group("h") or 0),
            int(m.group("mi") or 0),
            int(m.group("s") or 0),
            int(frac[:6].ljust(6, "0")),
        )
    except ValueError:
        return None
    tz = m.group("tz")
    if tz and tz != "Z":
        sign = -1 if tz[0] == "-" else 1
        digits = tz[1:].replace(":", "")
        offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
        dt = dt.replace(tzinfo=timezone(sign * offset))
    else:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def capture_timestamp_ms(tags: dict[str, Any]) -> int:
    """First parsable date in DATE_TAG_PRIORITY order; 0 when none is present."""
    for name in DATE_TAG_PRIORITY:
        ms = parse_exif_datetime(tags.get(name))
        if ms is not None:
            return ms
    return 0


class ExifSession:
    """
    One exiftool process shared by every extraction in a run.

    ExifToolHelper talks to its process over a single pipe, so calls are serialized with a lock.
    """

    def __init__(self, executable: str | None = None) -> None:
        self._executable = executable
        self._helper: ExifToolHelper | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._helper is not None and self._helper.running

    def start(self) -> "ExifSession":
        with self._lock:
            self._start_locked()
        return self

    def _start_locked(self) -> None:
        if self.running:
            return
        kwargs: dict[str, Any] = {}
        if self._executable:
            kwargs["executable"] = self._executable
        helper = ExifToolHelper(**kwargs)
        helper.run()
        self._helper = helper
        _log.debug("exiftool session started (version %s)", helper.version)

    def close(self) -> None:
        if self._helper is None:
            return
        try:
            if self._helper.running:
                self._helper.terminate()
        except ExifToolException as e:
            _log.warning("exiftool did not shut down cleanly: %s", e)
        finally:
            self._helper = None

    def __enter__(self) -> "ExifSession":
        return self.start()

    def __exit__(self, *args: object) -> None:
        self.close()

    def read_tags(self, path: Path) -> dict[str, Any]:
        """Return normalized tags for one file. Raises ExifToolException or OSError on failure."""
        with self._lock:
            self._start_locked()
            if self._helper is None:
                raise ExifToolException(f"exiftool is not running for {path}")
            blocks = self._helper.get_metadata(str(path))
        if not blocks:
            raise ValueError(f"exiftool returned no metadata for {path}")
        return normalize_tags(blocks[0])
