"""Video transcoding, resizing and preview frames (FFmpeg subprocess, ffprobe color probe)."""

from webimg.video.ffmpeg import FFmpegAttempt, FFmpegError, is_hdr_color_space, probe_color_space, run_ffmpeg

__all__ = ["FFmpegAttempt", "FFmpegError", "is_hdr_color_space", "probe_color_space", "run_ffmpeg"]
