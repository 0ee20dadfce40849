"""Asset descriptor: destination layout, eligibility and the expected-path set."""

from pathlib import Path

import pytest

from webimg.core.asset import Asset, MissingHDRFlagError
from webimg.models.entities import DEFAULT_PROFILES, AssetKind, AssetMetadata, OutputProfile

pytestmark = [pytest.mark.fast]

LARGE, SMALL, THUMB = DEFAULT_PROFILES


def _asset(rel_path: str, tmp_path: Path, **kwargs) -> Asset:
    return Asset(
        rel_path=rel_path,
        input_root=tmp_path / "lib",
        output_root=tmp_path / "out",
        index_id=1,
        **kwargs,
    )


def _video_metadata(hdr: bool | None = None, live: bool = False) -> AssetMetadata:
    md = AssetMetadata(quicktime={"LivePhotoAuto": live})
    if hdr is not None:
        md.set_hdr(hdr)
    return md


def test_plain_image_paths(tmp_path):
    """A jpg needs no conversion; renditions keep its relative path."""
    a = _asset("2021/trip/b.jpg", tmp_path)
    media = tmp_path / "out" / "media"
    assert a.kind == AssetKind.image
    assert a.needs_conversion is False
    assert a.dest_rel_path == "2021/trip/b.jpg"
    assert a.original_dest == media / "original" / "2021" / "trip" / "b.jpg"
    assert a.resize_dest(SMALL) == media / "small" / "2021" / "trip" / "b.jpg"
    assert a.web_source == tmp_path / "lib" / "2021" / "trip" / "b.jpg"


def test_heic_converts_to_jpg_and_renditions_follow(tmp_path):
    a = _asset("a.HEIC", tmp_path)
    media = tmp_path / "out" / "media"
    assert a.extension == ".heic"
    assert a.needs_conversion is True
    assert a.conversion_dest == media / "converted" / "a.HEIC__.jpg"
    assert a.dest_rel_path == "a.HEIC__.jpg"
    assert a.resize_dest(LARGE) == media / "large" / "a.HEIC__.jpg"
    assert a.web_source == a.conversion_dest


def test_mov_converts_to_mp4(tmp_path):
    a = _asset("clips/c.mov", tmp_path)
    assert a.is_video
    assert a.conversion_dest.name == "c.mov__.mp4"
    assert a.relocated_path(tmp_path / "reloc") == tmp_path / "reloc" / "clips" / "c.mov__.mp4"


def test_backslashes_normalized(tmp_path):
    a = _asset("dir\\sub\\x.png", tmp_path)
    assert a.rel_path == "dir/sub/x.png"
    assert str(a) == "dir/sub/x.png"


def test_preview_dest_requires_hdr_flag(tmp_path):
    a = _asset("c.mov", tmp_path, metadata=_video_metadata())
    with pytest.raises(MissingHDRFlagError):
        a.preview_dest(SMALL)


def test_preview_dest_png_for_hdr_jpg_otherwise(tmp_path):
    hdr = _asset("c.mov", tmp_path, metadata=_video_metadata(hdr=True))
    sdr = _asset("c.mov", tmp_path, metadata=_video_metadata(hdr=False))
    assert hdr.preview_dest(THUMB).name == "c.mov__.png"
    assert sdr.preview_dest(THUMB).name == "c.mov__.jpg"
    assert sdr.preview_dest(THUMB).parent == tmp_path / "out" / "media" / "thumb"


def test_live_photo_companion_is_not_eligible(tmp_path):
    assert _asset("c.mov", tmp_path, metadata=_video_metadata(live=True)).is_valid_to_process is False
    assert _asset("c.mov", tmp_path, metadata=_video_metadata(live=False)).is_valid_to_process is True
    assert _asset("c.mov", tmp_path).is_valid_to_process is True
    assert _asset("b.jpg", tmp_path).is_valid_to_process is True


def test_profile_applicability_by_kind(tmp_path):
    image = _asset("b.jpg", tmp_path)
    video = _asset("c.mov", tmp_path)
    assert [p.name for p in image.resize_profiles()] == ["large", "small", "thumb"]
    assert video.resize_profiles() == []
    # large has preview disabled
    assert [p.name for p in video.preview_profiles()] == ["small", "thumb"]
    assert image.preview_profiles() == []


def test_custom_video_profile(tmp_path):
    web = OutputProfile(name="web", image_height=480, video_height=720, preview=False)
    video = _asset("c.mov", tmp_path, profiles=(web,))
    assert video.resize_profiles() == [web]
    assert video.preview_profiles() == []
    assert video.resize_dest(web) == tmp_path / "out" / "media" / "web" / "c.mov__.mp4"


def test_expected_paths_image(tmp_path):
    a = _asset("a.heic", tmp_path)
    media = tmp_path / "out" / "media"
    assert a.expected_paths() == {
        media / "original" / "a.heic",
        media / "converted" / "a.heic__.jpg",
        media / "large" / "a.heic__.jpg",
        media / "small" / "a.heic__.jpg",
        media / "thumb" / "a.heic__.jpg",
    }


def test_expected_paths_keep_both_previews_while_hdr_unknown(tmp_path):
    unknown = _asset("c.mp4", tmp_path, metadata=_video_metadata())
    names = {p.name for p in unknown.expected_paths() if p.parent.name == "small"}
    assert names == {"c.mp4__.png", "c.mp4__.jpg"}

    known = _asset("c.mp4", tmp_path, metadata=_video_metadata(hdr=False))
    names = {p.name for p in known.expected_paths() if p.parent.name == "small"}
    assert names == {"c.mp4__.jpg"}


def test_existence_checks_see_dangling_symlinks(tmp_path):
    a = _asset("b.jpg", tmp_path)
    assert a.is_original_linked() is False
    a.original_dest.parent.mkdir(parents=True)
    a.original_dest.symlink_to(tmp_path / "does-not-exist.jpg")
    assert a.is_original_linked() is True


def test_profile_validation():
    with pytest.raises(ValueError):
        OutputProfile(name="original", image_height=100)
    with pytest.raises(ValueError):
        OutputProfile(name="a/b", image_height=100)
    with pytest.raises(ValueError):
        OutputProfile(name="tiny", image_height=0)
