"""Typed failures of external media tools. Raised with the original exception chained as __cause__."""


class ToolError(RuntimeError):
    """An external action (extract, probe, convert, resize, preview, link) failed for one asset."""


class MetadataError(ToolError):
    pass


class HDRProbeError(ToolError):
    pass


class ConverterError(ToolError):
    pass


class ResizerError(ToolError):
    pass


class PreviewError(ToolError):
    pass


class LinkError(ToolError):
    pass
