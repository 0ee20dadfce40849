"""Pytest fixtures: temp library/output roots, a fake media toolkit and an isolated config."""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from webimg.core import storage
from webimg.core.config import Settings, reset_config
from webimg.core.io_utils import atomic_write
from webimg.media.errors import (
    ConverterError,
    HDRProbeError,
    LinkError,
    MetadataError,
    PreviewError,
    ResizerError,
)
from webimg.pipeline.toolkit import MediaToolkit

DEFAULT_TAGS = {"MIMEType": "image/jpeg", "DateTimeOriginal": "2021:07:04 12:00:00"}

_ERRORS = {
    "extract_metadata": MetadataError,
    "classify_hdr": HDRProbeError,
    "convert_image": ConverterError,
    "convert_video": ConverterError,
    "relocate": ConverterError,
    "resize_image": ResizerError,
    "resize_video": ResizerError,
    "generate_preview": PreviewError,
    "link_original": LinkError,
}


class FakeToolkit(MediaToolkit):
    """
    Stands in for exiftool/ffmpeg/Pillow: writes small marker files through the same atomic write
    path and records every call as (action, target path).

    fail_on maps an action name to a substring of the target path that makes that call fail.
    """

    def __init__(
        self,
        *,
        tags: dict[str, dict[str, Any]] | None = None,
        hdr: set[str] | None = None,
        fail_on: dict[str, str] | None = None,
    ) -> None:
        self.tags = tags or {}
        self.hdr = hdr or set()
        self.fail_on = fail_on or {}
        self.calls: list[tuple[str, str]] = []
        self.entered = 0
        self._lock = threading.Lock()

    def __enter__(self) -> "FakeToolkit":
        self.entered += 1
        return self

    def __exit__(self, *args: object) -> None:
        pass

    def _call(self, action: str, target: Path) -> None:
        with self._lock:
            self.calls.append((action, target.as_posix()))
        needle = self.fail_on.get(action)
        if needle is not None and needle in target.as_posix():
            raise _ERRORS[action](f"{action} failed for {target}") from OSError("simulated failure")

    def actions(self, action: str) -> list[str]:
        return [t for a, t in self.calls if a == action]

    def _write(self, source: Path, dest: Path, action: str) -> None:
        if not source.exists():
            raise _ERRORS[action](f"Source missing: {source}") from FileNotFoundError(source)
        atomic_write(dest, lambda p: p.write_bytes(f"{action}:{source.name}".encode()))

    def extract_metadata(self, path: Path) -> dict[str, Any]:
        self._call("extract_metadata", path)
        return dict(self.tags.get(path.name, DEFAULT_TAGS))

    def classify_hdr(self, path: Path) -> bool:
        self._call("classify_hdr", path)
        return path.name in self.hdr

    def convert_image(self, source: Path, dest: Path) -> None:
        self._call("convert_image", dest)
        self._write(source, dest, "convert_image")

    def convert_video(self, source: Path, dest: Path) -> None:
        self._call("convert_video", dest)
        self._write(source, dest, "convert_video")

    def relocate(self, artifact: Path, relocated: Path) -> None:
        self._call("relocate", relocated)
        storage.relocate(artifact, relocated)

    def resize_image(self, source: Path, dest: Path, height: int) -> None:
        self._call("resize_image", dest)
        self._write(source, dest, "resize_image")

    def resize_video(self, source: Path, dest: Path, height: int) -> None:
        self._call("resize_video", dest)
        self._write(source, dest, "resize_video")

    def generate_preview(self, source: Path, dest: Path, height: int, hdr: bool) -> None:
        self._call("generate_preview", dest)
        self._write(source, dest, "generate_preview")

    def link_original(self, source: Path, link: Path) -> None:
        self._call("link_original", link)
        storage.link_original(source, link)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """No webimg.yml or WEBIMG_* variables from the developer's environment leak into tests."""
    for var in ("WEBIMG_CONFIG", "WEBIMG_INPUT", "WEBIMG_OUTPUT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def library(tmp_path) -> Path:
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def output_root(tmp_path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def make_source(library) -> Callable[..., Path]:
    """Create a source file under the library; mtime_ms pins its modification time."""

    def _make(rel_path: str, data: bytes = b"source", mtime_ms: int | None = None) -> Path:
        path = library.joinpath(*rel_path.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if mtime_ms is not None:
            ns = mtime_ms * 1_000_000
            os.utime(path, ns=(ns, ns))
        return path

    return _make


@pytest.fixture
def settings(library, output_root) -> Settings:
    return Settings(input=str(library), output=str(output_root), max_workers=2)


@pytest.fixture
def toolkit() -> FakeToolkit:
    return FakeToolkit()


@pytest.fixture
def make_toolkit() -> Callable[..., FakeToolkit]:
    """FakeToolkit factory for tests that need tags, HDR sources or injected failures."""
    return FakeToolkit


@pytest.fixture
def root_logging():
    """setup_logging replaces root handlers; put the originals back so later tests log normally."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for h in root.handlers[:]:
        root.removeHandler(h)
        if h not in saved_handlers:
            h.close()
    for h in saved_handlers:
        root.addHandler(h)
    root.setLevel(saved_level)
