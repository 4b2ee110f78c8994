"""Headless clip rendering, overlay compositing and job orchestration."""

from akira_render.render.bundle_cache import BundleCache, BundleHandle
from akira_render.render.clip_renderer import ClipRenderer, RenderedClip, frames_for_window
from akira_render.render.compositor import CompositeConfig, CompositeOutput, OverlayCompositor
from akira_render.render.pipeline import AnimationSpec, ClipOutcome, RenderPipeline
from akira_render.render.status_store import JobStatusStore

__all__ = [
    "AnimationSpec",
    "BundleCache",
    "BundleHandle",
    "ClipOutcome",
    "ClipRenderer",
    "CompositeConfig",
    "CompositeOutput",
    "JobStatusStore",
    "OverlayCompositor",
    "RenderPipeline",
    "RenderedClip",
    "frames_for_window",
]
