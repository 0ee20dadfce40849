"""Tests for the derived-file store (Pillow conversion/resizing, original links, relocation)."""

import os
from pathlib import Path

import pytest
from PIL import Image

from webimg.core.storage import convert_image, link_original, relocate, resize_image, scale_to_height

pytestmark = [pytest.mark.fast]

ORIENTATION_TAG = 0x0112


def _jpeg(path, size=(64, 32), orientation=None, mode="RGB"):
    img = Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else 128)
    kwargs = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[ORIENTATION_TAG] = orientation
        kwargs["exif"] = exif
    img.save(path, "JPEG", **kwargs)
    return path


def test_scale_to_height_exact_and_aspect():
    """scale_to_height hits the target height exactly and keeps aspect ratio (upscaling allowed)."""
    img = Image.new("RGB", (400, 300))
    assert scale_to_height(img, 150).size == (200, 150)
    assert scale_to_height(img, 600).size == (800, 600)
    assert scale_to_height(Image.new("RGB", (1, 1000)), 10).size == (1, 10)
    with pytest.raises(ValueError):
        scale_to_height(img, 0)


def test_resize_image_writes_jpeg_at_height(tmp_path):
    """resize_image writes a JPEG of the requested height under a created parent dir."""
    src = _jpeg(tmp_path / "b.jpg", size=(300, 200))
    dest = tmp_path / "out" / "small" / "b.jpg"
    resize_image(src, dest, 100)
    with Image.open(dest) as out:
        assert out.format == "JPEG"
        assert out.size == (150, 100)
    assert sorted(p.name for p in dest.parent.iterdir()) == ["b.jpg"]


def test_resize_applies_exif_orientation(tmp_path):
    """A portrait photo stored landscape with orientation 6 comes out upright."""
    src = _jpeg(tmp_path / "p.jpg", size=(80, 40), orientation=6)
    dest = tmp_path / "small" / "p.jpg"
    resize_image(src, dest, 40)
    with Image.open(dest) as out:
        assert out.size == (20, 40)


def test_convert_png_source_to_jpeg(tmp_path):
    """convert_image re-encodes into the format of the destination suffix (RGBA flattened for JPEG)."""
    src = tmp_path / "a.png"
    Image.new("RGBA", (10, 10), (0, 0, 255, 128)).save(src, "PNG")
    dest = tmp_path / "converted" / "a.png__.jpg"
    convert_image(src, dest)
    with Image.open(dest) as out:
        assert out.format == "JPEG"
        assert out.mode == "RGB"


def test_resize_unreadable_source_raises_and_leaves_nothing(tmp_path):
    src = tmp_path / "broken.jpg"
    src.write_bytes(b"not an image")
    dest = tmp_path / "small" / "broken.jpg"
    with pytest.raises(OSError):
        resize_image(src, dest, 10)
    assert not dest.exists()


def test_unsupported_destination_suffix(tmp_path):
    src = _jpeg(tmp_path / "b.jpg")
    with pytest.raises(ValueError):
        resize_image(src, tmp_path / "b.tiff", 10)


def test_link_original_replaces_existing_entry(tmp_path):
    """link_original creates parents and replaces a stale (even dangling) link."""
    (tmp_path / "lib").mkdir()
    src = _jpeg(tmp_path / "lib" / "b.jpg")
    link = tmp_path / "media" / "original" / "b.jpg"
    link.parent.mkdir(parents=True)
    link.symlink_to(tmp_path / "old-target.jpg")
    link_original(src, link)
    assert link.is_symlink()
    assert os.readlink(link) == str(src)
    assert link.resolve() == src.resolve()


def test_relocate_moves_and_links_back(tmp_path):
    """relocate moves the artifact and leaves a symlink where it was."""
    artifact = tmp_path / "media" / "converted" / "a.heic__.jpg"
    artifact.parent.mkdir(parents=True)
    artifact.write_bytes(b"converted")
    target = tmp_path / "reloc" / "sub" / "a.heic__.jpg"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"previous copy")

    relocate(artifact, target)
    assert target.read_bytes() == b"converted"
    assert artifact.is_symlink()
    assert os.readlink(artifact) == str(target)
    assert artifact.read_bytes() == b"converted"


def test_links_store_absolute_targets_for_relative_paths(tmp_path, monkeypatch):
    """Relative paths still produce links that resolve from inside the output tree."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "lib").mkdir()
    _jpeg(tmp_path / "lib" / "b.jpg")
    link_original(Path("lib/b.jpg"), Path("out/media/original/b.jpg"))
    link = tmp_path / "out" / "media" / "original" / "b.jpg"
    assert os.path.isabs(os.readlink(link))
    assert link.resolve() == (tmp_path / "lib" / "b.jpg").resolve()

    artifact = tmp_path / "out" / "media" / "converted" / "a.heic__.jpg"
    artifact.parent.mkdir(parents=True)
    artifact.write_bytes(b"converted")
    relocate(Path("out/media/converted/a.heic__.jpg"), Path("reloc/a.heic__.jpg"))
    assert os.readlink(artifact) == str(tmp_path / "reloc" / "a.heic__.jpg")
    assert artifact.read_bytes() == b"converted"
