"""Single source of truth for supported file extensions (scanner, descriptor, conversion)."""

VIDEO_EXTENSIONS = {".mov", ".mp4"}

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".heic"}

SUPPORTED_EXTENSIONS = VIDEO_EXTENSIONS | IMAGE_EXTENSIONS

# Source extension -> web-ready extension. Anything not listed is served as-is.
IMAGE_CONVERSIONS = {".heic": ".jpg"}
VIDEO_CONVERSIONS = {".mov": ".mp4"}

# Video previews: lossless PNG keeps tone-mapped HDR frames intact, JPEG otherwise.
VIDEO_PREVIEW_EXTENSION = ".jpg"
VIDEO_PREVIEW_EXTENSION_HDR = ".png"
