"""webimg: incremental photo/video pipeline producing a web-ready media tree."""

__version__ = "0.4.0"
