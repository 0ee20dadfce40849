"""The fixed pipeline stages, in execution order."""

import logging
from typing import Any

from webimg.core.asset import Asset, MissingHDRFlagError
from webimg.media.errors import PreviewError
from webimg.media.exif import capture_timestamp_ms
from webimg.models.entities import AssetMetadata, OutputProfile
from webimg.pipeline.runner import RunContext, Stage, WorkItem

_log = logging.getLogger(__name__)


def _stale(asset: Asset, exists: bool) -> bool:
    """Regenerate when the artifact is missing or the source changed since the last full pass."""
    return not exists or not asset.processed


class MetadataStage(Stage):
    name = "Extracting metadata"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        return [WorkItem(a) for a in ctx.assets if a.metadata is None]

    def failure_label(self, item: WorkItem) -> str:
        return "EXIF data extraction"

    def intent(self, item: WorkItem) -> str:
        return f"extract metadata from {item.asset}"

    def done(self, item: WorkItem) -> str:
        return f"Extracted metadata from {item.asset}"

    def perform(self, ctx: RunContext, item: WorkItem) -> dict[str, Any]:
        return ctx.toolkit.extract_metadata(item.asset.path)

    def commit(self, ctx: RunContext, item: WorkItem, result: dict[str, Any]) -> None:
        metadata = AssetMetadata.from_tags(result)
        item.asset.metadata = metadata
        ctx.repo.update_metadata(item.asset.index_id, metadata)
        ctx.repo.update_date(item.asset.index_id, capture_timestamp_ms(result))


class EligibilityStage(Stage):
    """Drops assets that must not be processed (auto Live Photo clips) and clears their processed flag."""

    name = "Filtering files"

    def finish(self, ctx: RunContext) -> None:
        eligible = [a for a in ctx.assets if a.is_valid_to_process]
        skipped = [a for a in ctx.assets if not a.is_valid_to_process]
        for asset in skipped:
            _log.info("Skipping %s (not eligible for processing)", asset)
        if skipped and not ctx.dry_run:
            ctx.repo.clear_processed([a.index_id for a in skipped if a.processed])
        for asset in skipped:
            asset.processed = False
        ctx.assets = eligible


class HDRStage(Stage):
    name = "Setting HDR flag"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        return [
            WorkItem(a)
            for a in ctx.assets
            if a.is_video and (a.metadata is None or a.metadata.hdr is None)
        ]

    def failure_label(self, item: WorkItem) -> str:
        return "HDR flag setting"

    def intent(self, item: WorkItem) -> str:
        return f"classify HDR for {item.asset}"

    def done(self, item: WorkItem) -> str:
        hdr = item.asset.metadata.hdr if item.asset.metadata is not None else None
        return f"Classified {item.asset} as {'HDR' if hdr else 'SDR'}"

    def perform(self, ctx: RunContext, item: WorkItem) -> bool:
        return ctx.toolkit.classify_hdr(item.asset.path)

    def commit(self, ctx: RunContext, item: WorkItem, result: bool) -> None:
        asset = item.asset
        if asset.metadata is None:
            # No stored metadata yet: the flag lives on this run only and extraction is retried.
            asset.metadata = AssetMetadata()
            asset.metadata.set_hdr(result)
            return
        asset.metadata.set_hdr(result)
        ctx.repo.update_metadata(asset.index_id, asset.metadata)


class ConversionStage(Stage):
    name = "Converting"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        images = [a for a in ctx.assets if a.is_image and a.needs_conversion]
        videos = [a for a in ctx.assets if a.is_video and a.needs_conversion]
        return [WorkItem(a) for a in images + videos if _stale(a, a.is_converted())]

    def failure_label(self, item: WorkItem) -> str:
        return "Image conversion" if item.asset.is_image else "Video conversion"

    def intent(self, item: WorkItem) -> str:
        return f"convert {item.asset} to {item.asset.conversion_dest}"

    def done(self, item: WorkItem) -> str:
        return f"Converted {item.asset} to {item.asset.conversion_dest}"

    def perform(self, ctx: RunContext, item: WorkItem) -> None:
        asset = item.asset
        if asset.is_image:
            ctx.toolkit.convert_image(asset.path, asset.conversion_dest)
        else:
            ctx.toolkit.convert_video(asset.path, asset.conversion_dest)
        if ctx.relocate_root is not None:
            ctx.toolkit.relocate(asset.conversion_dest, asset.relocated_path(ctx.relocate_root))

    def record(self, ctx: RunContext, item: WorkItem) -> None:
        ctx.converted.append(item.asset)


class ResizeStage(Stage):
    name = "Resizing"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        images = [a for a in ctx.assets if a.is_image]
        videos = [a for a in ctx.assets if a.is_video]
        return [
            WorkItem(a, profile)
            for a in images + videos
            for profile in a.resize_profiles()
            if _stale(a, a.is_resized_to(profile))
        ]

    def failure_label(self, item: WorkItem) -> str:
        kind = "Image" if item.asset.is_image else "Video"
        return f"{kind} resizing to {item.profile.name}"

    def intent(self, item: WorkItem) -> str:
        return f"resize {item.asset} to {item.asset.resize_dest(item.profile)}"

    def done(self, item: WorkItem) -> str:
        return f"Resized {item.asset} to {item.asset.resize_dest(item.profile)}"

    def perform(self, ctx: RunContext, item: WorkItem) -> None:
        asset, profile = item.asset, item.profile
        dest = asset.resize_dest(profile)
        if asset.is_image:
            ctx.toolkit.resize_image(asset.web_source, dest, profile.image_height)
        else:
            ctx.toolkit.resize_video(asset.web_source, dest, profile.video_height)

    def record(self, ctx: RunContext, item: WorkItem) -> None:
        ctx.resized.append(item)


class PreviewStage(Stage):
    name = "Generating video previews"

    @staticmethod
    def _known_preview(asset: Asset, profile: OutputProfile) -> bool:
        try:
            return asset.is_preview_generated(profile)
        except MissingHDRFlagError:
            return False

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        return [
            WorkItem(a, profile)
            for a in ctx.assets
            if a.is_video
            for profile in a.preview_profiles()
            if _stale(a, self._known_preview(a, profile))
        ]

    def failure_label(self, item: WorkItem) -> str:
        return f"Video preview generation to {item.profile.name}"

    def intent(self, item: WorkItem) -> str:
        return f"generate {item.profile.name} preview for {item.asset}"

    def done(self, item: WorkItem) -> str:
        return f"Generated video preview for {item.asset} to {item.asset.preview_dest(item.profile)}"

    def perform(self, ctx: RunContext, item: WorkItem) -> None:
        asset, profile = item.asset, item.profile
        try:
            dest = asset.preview_dest(profile)
        except MissingHDRFlagError as e:
            raise PreviewError(f"Cannot generate preview for {asset}: HDR classification unavailable") from e
        ctx.toolkit.generate_preview(asset.path, dest, profile.image_height, bool(asset.metadata.hdr))

    def record(self, ctx: RunContext, item: WorkItem) -> None:
        ctx.resized.append(item)


class OriginalLinkStage(Stage):
    name = "Linking originals"

    def plan(self, ctx: RunContext) -> list[WorkItem]:
        return [WorkItem(a) for a in ctx.assets if not a.is_original_linked()]

    def failure_label(self, item: WorkItem) -> str:
        return "Original symlink creation"

    def intent(self, item: WorkItem) -> str:
        return f"link {item.asset.original_dest} to {item.asset.path}"

    def done(self, item: WorkItem) -> str:
        return f"Linked {item.asset} to {item.asset.original_dest}"

    def perform(self, ctx: RunContext, item: WorkItem) -> None:
        ctx.toolkit.link_original(item.asset.path, item.asset.original_dest)

    def record(self, ctx: RunContext, item: WorkItem) -> None:
        ctx.linked.append(item.asset)


class CommitStage(Stage):
    """Marks every surviving asset without a problem this run as processed, in one statement."""

    name = "Updating processed files in index"

    def finish(self, ctx: RunContext) -> None:
        done = [a for a in ctx.assets if not ctx.has_problem(a)]
        pending = [a.index_id for a in done if not a.processed]
        if pending and not ctx.dry_run:
            ctx.repo.mark_processed(pending)
        if pending:
            _log.info("%s %d file(s) as processed", "Would mark" if ctx.dry_run else "Marked", len(pending))
        if not ctx.dry_run:
            for asset in done:
                asset.processed = True
        ctx.committed = done


def default_stages() -> list[Stage]:
    return [
        MetadataStage(),
        EligibilityStage(),
        HDRStage(),
        ConversionStage(),
        ResizeStage(),
        PreviewStage(),
        OriginalLinkStage(),
        CommitStage(),
    ]
