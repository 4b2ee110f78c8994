"""Overlay compositing with FFmpeg filter_complex.

Every rendered clip is time-shifted with ``-itsoffset`` so its first frame
lands on its start time, converted to yuva420p to keep the VP8 alpha, scaled
to the base video's resolution, and overlaid onto a running accumulator that
is only enabled inside the clip's window:

    [0:v] ──overlay(s0, between(t,a0,b0))──> [v0] ──overlay(s1, ...)──> ... [out]

Clips are layered in ascending start order, so a later clip wins where windows
overlap. The base audio stream is copied untouched when present.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from akira_render.config import Settings, get_settings
from akira_render.exceptions import CompositionError
from akira_render.render.clip_renderer import RenderedClip
from akira_render.utils.media_info import get_media_duration, get_video_dimensions, has_audio_track
from akira_render.utils.process import tail_output

logger = logging.getLogger(__name__)


@dataclass
class CompositeConfig:
    """Encoder configuration for the composed output."""

    video_codec: str = "libx264"
    preset: str = "fast"
    crf: int = 23
    pixel_format: str = "yuv420p"
    timeout_s: float = 600

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompositeConfig":
        return cls(
            video_codec=settings.render_video_codec,
            preset=settings.render_preset,
            crf=settings.render_crf,
            timeout_s=settings.compose_timeout_s,
        )


@dataclass
class CompositeOutput:
    """Output result from compositing."""

    path: Path
    width: int
    height: int
    clips_count: int
    has_audio: bool = False
    file_size: int = 0

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "path": str(self.path),
            "width": self.width,
            "height": self.height,
            "clips_count": self.clips_count,
            "has_audio": self.has_audio,
            "file_size": self.file_size,
        }


class OverlayCompositor:
    """Composites transparent overlay clips onto a base video."""

    OUTPUT_FILENAME = "final-output.mp4"

    def __init__(
        self,
        config: Optional[CompositeConfig] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or CompositeConfig.from_settings(self.settings)

    @staticmethod
    def order_clips(clips: Sequence[RenderedClip]) -> list[RenderedClip]:
        """Ascending start time; equal starts are layered by clip index."""
        return sorted(clips, key=lambda clip: (clip.start, clip.index))

    @staticmethod
    def build_enable_expr(start_s: float, end_s: float) -> str:
        return f"between(t,{start_s:.6f},{end_s:.6f})"

    def build_filter_complex(
        self,
        clips: Sequence[RenderedClip],
        width: int,
        height: int,
    ) -> str:
        """Build the filter graph for already ordered clips.

        Input 0 is the base video; clip ``i`` is input ``i + 1``.
        """
        filters = []
        current_label = "0:v"

        for i, clip in enumerate(clips):
            scaled_label = f"s{i}"
            output_label = "out" if i == len(clips) - 1 else f"v{i}"
            enable_expr = self.build_enable_expr(clip.start, clip.end)

            filters.append(
                f"[{i + 1}:v]format=yuva420p,scale={width}:{height}:flags=lanczos[{scaled_label}]"
            )
            filters.append(
                f"[{current_label}][{scaled_label}]overlay=0:0:shortest=0:format=auto:"
                f"enable='{enable_expr}'[{output_label}]"
            )
            current_label = output_label

        return ";".join(filters)

    def build_command(
        self,
        base_video_path: str,
        clips: Sequence[RenderedClip],
        width: int,
        height: int,
        output_path: str,
    ) -> list[str]:
        """Build the FFmpeg command for already ordered clips without executing it."""
        cmd = [self.settings.ffmpeg_path, "-y", "-i", base_video_path]

        # libvpx is forced so the VP8 alpha plane is decoded
        for clip in clips:
            cmd.extend([
                "-itsoffset", f"{clip.start:.6f}",
                "-c:v", "libvpx",
                "-i", clip.path,
            ])

        cmd.extend([
            "-filter_complex", self.build_filter_complex(clips, width, height),
            "-map", "[out]",
            "-map", "0:a?",
            "-c:a", "copy",
            "-c:v", self.config.video_codec,
            "-preset", self.config.preset,
            "-crf", str(self.config.crf),
            "-pix_fmt", self.config.pixel_format,
            "-movflags", "+faststart",
            output_path,
        ])
        return cmd

    def compose(
        self,
        base_video_path: str,
        clips: Sequence[RenderedClip],
        output_dir: str,
    ) -> CompositeOutput:
        """Composite all clips onto the base video.

        Raises:
            CompositionError: If there is nothing to compose, probing fails,
                or FFmpeg fails or times out
        """
        if not clips:
            raise CompositionError("No animation clips to compose")

        try:
            width, height = get_video_dimensions(base_video_path)
        except RuntimeError as e:
            raise CompositionError(f"Failed to probe base video: {e}", stderr=str(e)) from e

        logger.info(f"[FFmpeg] Base video dimensions: {width}x{height}")
        ordered = self.order_clips(clips)
        self._warn_out_of_range(base_video_path, ordered)

        output_path = str(Path(output_dir) / self.OUTPUT_FILENAME)
        cmd = self.build_command(base_video_path, ordered, width, height, output_path)
        logger.info(f"[FFmpeg] Compositing {len(ordered)} overlays: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            stderr = tail_output(e.stderr, max_lines=200)
            raise CompositionError(
                f"FFmpeg composition timed out after {self.config.timeout_s:.0f}s",
                stderr=stderr,
            ) from e
        except FileNotFoundError as e:
            raise CompositionError(f"FFmpeg not found: {self.settings.ffmpeg_path}") from e

        if result.returncode != 0:
            logger.error(f"[FFmpeg] stderr: {result.stderr}")
            raise CompositionError(
                f"FFmpeg composition failed (exit {result.returncode}): "
                f"{tail_output(result.stderr, max_lines=5)}",
                stderr=result.stderr,
            )

        output = Path(output_path)
        logger.info(f"[FFmpeg] Composition complete: {output_path}")
        return CompositeOutput(
            path=output,
            width=width,
            height=height,
            clips_count=len(ordered),
            has_audio=has_audio_track(base_video_path),
            file_size=output.stat().st_size if output.exists() else 0,
        )

    def _warn_out_of_range(self, base_video_path: str, clips: Sequence[RenderedClip]) -> None:
        """Windows past the end are allowed; the overlay gate clamps them."""
        try:
            duration_s = get_media_duration(base_video_path)
        except RuntimeError:
            return
        for clip in clips:
            if clip.end > duration_s:
                logger.warning(
                    f"[FFmpeg] Clip {clip.index} window {clip.start:.2f}-{clip.end:.2f}s "
                    f"exceeds base duration {duration_s:.2f}s"
                )
