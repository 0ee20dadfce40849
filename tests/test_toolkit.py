"""MediaToolkit: every external failure surfaces as the matching ToolError with its cause attached."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from webimg.media.errors import (
    ConverterError,
    HDRProbeError,
    LinkError,
    MetadataError,
    PreviewError,
    ResizerError,
    ToolError,
)
from webimg.pipeline.toolkit import MediaToolkit
from webimg.video.ffmpeg import FFmpegAttempt, FFmpegError

pytestmark = [pytest.mark.fast]


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def kit(session):
    return MediaToolkit(exif_session=session)


def test_context_manager_starts_and_closes_exiftool(kit, session):
    with kit as entered:
        assert entered is kit
    session.start.assert_called_once()
    session.close.assert_called_once()


def test_exiftool_start_failure_is_not_fatal(kit, session):
    session.start.side_effect = FileNotFoundError("exiftool")
    with kit:
        pass
    session.close.assert_called_once()


def test_extract_metadata_wraps_errors(kit, session):
    session.read_tags.return_value = {"MIMEType": "image/jpeg"}
    assert kit.extract_metadata(Path("a.jpg")) == {"MIMEType": "image/jpeg"}
    session.read_tags.side_effect = ValueError("no metadata")
    with pytest.raises(MetadataError) as exc_info:
        kit.extract_metadata(Path("a.jpg"))
    assert isinstance(exc_info.value.__cause__, ValueError)
    assert isinstance(exc_info.value, ToolError)


def test_classify_hdr(kit):
    with patch("webimg.pipeline.toolkit.probe_color_space", return_value="color_space=bt2020nc\n"):
        assert kit.classify_hdr(Path("c.mov")) is True
    err = subprocess.CalledProcessError(1, ["ffprobe"])
    with patch("webimg.pipeline.toolkit.probe_color_space", side_effect=err):
        with pytest.raises(HDRProbeError) as exc_info:
            kit.classify_hdr(Path("c.mov"))
    assert exc_info.value.__cause__ is err


def test_image_errors_wrapped(kit, tmp_path):
    missing = tmp_path / "missing.heic"
    with pytest.raises(ConverterError):
        kit.convert_image(missing, tmp_path / "converted" / "missing.heic__.jpg")
    with pytest.raises(ResizerError):
        kit.resize_image(missing, tmp_path / "small" / "missing.jpg", 100)


def test_ffmpeg_failure_wrapped_and_dest_removed(kit, tmp_path):
    dest = tmp_path / "converted" / "c.mov__.mp4"
    failed = FFmpegAttempt(cmd=["ffmpeg"], returncode=1, stderr="Invalid data")
    with patch("webimg.pipeline.toolkit.run_ffmpeg", return_value=failed):
        with pytest.raises(ConverterError) as exc_info:
            kit.convert_video(tmp_path / "c.mov", dest)
        assert isinstance(exc_info.value.__cause__, FFmpegError)
        with pytest.raises(ResizerError):
            kit.resize_video(tmp_path / "c.mp4", tmp_path / "small" / "c.mp4", 480)
        with pytest.raises(PreviewError):
            kit.generate_preview(tmp_path / "c.mov", tmp_path / "small" / "c.mov__.png", 220, True)
    assert not dest.exists()


def test_ffmpeg_success_writes_through_tmp(kit, tmp_path):
    final = tmp_path / "small" / "c.mov__.jpg"

    def _fake_run(cmd, dest=None):
        dest.write_bytes(b"frame")
        return FFmpegAttempt(cmd=cmd, returncode=0, stderr="")

    with patch("webimg.pipeline.toolkit.run_ffmpeg", side_effect=_fake_run) as run:
        kit.generate_preview(tmp_path / "c.mov", final, 220, False)
    written_to = run.call_args.kwargs["dest"]
    assert written_to != final
    assert written_to.suffix == ".jpg"
    assert final.read_bytes() == b"frame"


def test_link_and_relocate_errors_wrapped(kit, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"x")
    with pytest.raises(LinkError):
        kit.link_original(tmp_path / "src.jpg", blocker / "original" / "src.jpg")
    with pytest.raises(ConverterError):
        kit.relocate(tmp_path / "missing.jpg", tmp_path / "reloc" / "missing.jpg")
