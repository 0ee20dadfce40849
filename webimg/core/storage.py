"""Local derived-file store: Pillow conversion/resizing, original links and relocation of converted copies."""

import logging
import os
import shutil
from pathlib import Path

from PIL import Image
from PIL import ImageOps
from pillow_heif import register_heif_opener

from webimg.core.io_utils import atomic_write, lexists

# HEIC/HEIF sources open through Pillow like any other image.
register_heif_opener()

_log = logging.getLogger(__name__)

JPEG_QUALITY = 90

_PIL_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
}


def _pil_format(dest_path: Path) -> str:
    try:
        return _PIL_FORMATS[dest_path.suffix.lower()]
    except KeyError:
        raise ValueError(f"Unsupported image output format: {dest_path.suffix}") from None


def load_oriented_image(source_path: Path) -> Image.Image:
    """Open image via Pillow and apply its EXIF orientation so portrait photos render upright."""
    with Image.open(source_path) as img:
        img.load()
        oriented = ImageOps.exif_transpose(img)
    return oriented if oriented is not None else img


def _save(image: Image.Image, dest_path: Path) -> None:
    fmt = _pil_format(dest_path)
    exif = image.getexif()

    def _do_write(p: Path) -> None:
        out = image
        if fmt == "JPEG":
            if out.mode not in ("RGB", "L"):
                out = out.convert("RGB")
            out.save(p, fmt, quality=JPEG_QUALITY, exif=exif)
        else:
            out.save(p, fmt, exif=exif)

    atomic_write(dest_path, _do_write)


def scale_to_height(image: Image.Image, height: int) -> Image.Image:
    """Return a copy scaled to exactly height pixels tall, aspect ratio preserved."""
    if height <= 0:
        raise ValueError(f"Target height must be positive, got {height}")
    width = max(1, round(image.width * height / image.height))
    if (width, height) == image.size:
        return image.copy()
    return image.resize((width, height), Image.Resampling.LANCZOS)


def convert_image(source_path: Path, dest_path: Path) -> None:
    """Re-encode source (e.g. HEIC) into the format implied by dest_path's suffix."""
    image = load_oriented_image(source_path)
    _save(image, dest_path)


def resize_image(source_path: Path, dest_path: Path, height: int) -> None:
    image = load_oriented_image(source_path)
    _save(scale_to_height(image, height), dest_path)


def link_original(source_path: Path, link_path: Path) -> None:
    """Create link_path as an absolute symlink to source_path; an existing entry is replaced."""
    link_path.parent.mkdir(parents=True, exist_ok=True)
    if lexists(link_path):
        link_path.unlink()
    os.symlink(source_path.absolute(), link_path)


def relocate(artifact_path: Path, relocated_path: Path) -> None:
    """
    Move a finished artifact under the relocation root and leave a symlink at its old location.

    If linking back fails the moved file stays where it is; the next run regenerates the link.
    """
    relocated_path.parent.mkdir(parents=True, exist_ok=True)
    if lexists(relocated_path):
        relocated_path.unlink()
    shutil.move(str(artifact_path), str(relocated_path))
    _log.debug("Relocated %s -> %s", artifact_path, relocated_path)
    os.symlink(relocated_path.absolute(), artifact_path)
