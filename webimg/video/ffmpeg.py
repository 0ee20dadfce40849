"""FFmpeg/ffprobe helpers: video conversion, resizing, preview frames and HDR color probing."""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from webimg.core.io_utils import file_non_empty

_log = logging.getLogger(__name__)

_ZERO_BYTE_STDERR_SUFFIX = "\n[webimg] Output file is 0 bytes; treating as failure"
_DEFAULT_STDERR_TAIL_LINES = 40

# Transfer/primaries values that mark wide-gamut (HDR) footage.
HDR_COLOR_MARKERS = ("bt2020",)

# Linearize, tone-map (hable) and convert to bt709 before scaling.
HDR_TONEMAP_FILTER = (
    "zscale=t=linear:npl=100,format=gbrpf32le,tonemap=hable,"
    "zscale=t=bt709:m=bt709:r=tv,format=yuv420p"
)


def _cmd_to_repro(cmd: list[str]) -> str:
    """Render a shell-safe repro command line for copy/paste."""
    return " ".join(shlex.quote(str(c)) for c in cmd)


def _stderr_tail(stderr: str, *, max_lines: int = _DEFAULT_STDERR_TAIL_LINES) -> str:
    if not stderr:
        return ""
    lines = stderr.strip().splitlines()
    tail = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n".join(tail).strip()


@dataclass(frozen=True)
class FFmpegAttempt:
    cmd: list[str]
    returncode: int
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def repro(self) -> str:
        return _cmd_to_repro(self.cmd)

    def stderr_tail(self, *, max_lines: int = _DEFAULT_STDERR_TAIL_LINES) -> str:
        return _stderr_tail(self.stderr, max_lines=max_lines)

    def describe(self, label: str) -> str:
        tail = self.stderr_tail()
        if tail:
            return f"{label}\nRepro: {self.repro}\nFFmpeg stderr tail:\n{tail}"
        return f"{label}\nRepro: {self.repro}"


class FFmpegError(RuntimeError):
    """ffmpeg exited non-zero or produced an empty file."""

    def __init__(self, label: str, attempt: FFmpegAttempt) -> None:
        super().__init__(attempt.describe(label))
        self.attempt = attempt


def run_ffmpeg(cmd: list[str], dest: Path | None = None) -> FFmpegAttempt:
    """
    Run an ffmpeg command to completion. When dest is given, a zero-byte or missing output
    turns a zero exit code into a failed attempt.
    """
    _log.debug("ffmpeg: %s", _cmd_to_repro(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    attempt = FFmpegAttempt(cmd=cmd, returncode=int(result.returncode), stderr=result.stderr or "")
    if attempt.ok and dest is not None and not file_non_empty(dest):
        return FFmpegAttempt(cmd=cmd, returncode=1, stderr=attempt.stderr + _ZERO_BYTE_STDERR_SUFFIX)
    return attempt


def _scale_filter(height: int) -> str:
    # -2 keeps aspect ratio with an even width (required by yuv420p encoders)
    return f"scale=-2:{int(height)}"


def build_convert_video_cmd(source: Path, dest: Path) -> list[str]:
    """Transcode to a web-safe H.264/AAC MP4."""
    return [
        "ffmpeg", "-y", "-v", "error",
        "-i", str(source),
        "-map_metadata", "0",
        "-c:v", "libx264", "-preset", "medium", "-crf", "20",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-movflags", "+faststart",
        str(dest),
    ]


def build_resize_video_cmd(source: Path, dest: Path, height: int) -> list[str]:
    return [
        "ffmpeg", "-y", "-v", "error",
        "-i", str(source),
        "-vf", _scale_filter(height),
        "-c:v", "libx264", "-preset", "medium", "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-movflags", "+faststart",
        str(dest),
    ]


def build_preview_cmd(source: Path, dest: Path, height: int, hdr: bool) -> list[str]:
    """Single representative frame scaled to height; HDR sources are tone-mapped to bt709 first."""
    vf = f"{HDR_TONEMAP_FILTER},{_scale_filter(height)}" if hdr else _scale_filter(height)
    return [
        "ffmpeg", "-y", "-v", "error",
        "-i", str(source),
        "-vf", vf,
        "-vframes", "1",
        str(dest),
    ]


def build_color_probe_cmd(source: Path) -> list[str]:
    return [
        "ffprobe", "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=color_space,color_transfer,color_primaries",
        "-of", "default=noprint_wrappers=1",
        str(source),
    ]


def is_hdr_color_space(stdout: str) -> bool:
    """
    Decide HDR from ffprobe's key=value output. Only the first line (the primary color-space
    descriptor) is considered; anything unparsable counts as standard dynamic range.
    """
    lines = (stdout or "").strip().splitlines()
    if not lines:
        return False
    _, sep, value = lines[0].partition("=")
    if not sep:
        return False
    value = value.strip().lower()
    return any(marker in value for marker in HDR_COLOR_MARKERS)


def probe_color_space(source: Path) -> str:
    """Return ffprobe's color description output; raise CalledProcessError on failure."""
    cmd = build_color_probe_cmd(source)
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)
    return result.stdout or ""
