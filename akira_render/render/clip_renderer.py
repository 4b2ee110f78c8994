"""Render one animation program to a transparent video clip with Remotion.

Each clip is rendered at a fixed 1920x1080 with VP8/WebM and a yuva420p pixel
format so the alpha channel survives; the compositor scales it to the base
video's resolution afterwards.
"""

import json
import logging
import math
import os
import re
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from akira_render.config import Settings, get_settings
from akira_render.exceptions import ClipRenderError
from akira_render.render.bundle_cache import BundleHandle
from akira_render.utils.process import tail_output

logger = logging.getLogger(__name__)

FPS = 30
MIN_CLIP_FRAMES = 30

# Remotion prints frame counters such as "Rendered 45/150"
_FRAME_PROGRESS_RE = re.compile(r"(\d+)\s*/\s*(\d+)")

ProgressCallback = Callable[[int, int], None]


def frames_for_window(
    start: float,
    end: float,
    fps: int = FPS,
    minimum: int = MIN_CLIP_FRAMES,
) -> int:
    """Frame count for an overlay window, floored to a minimum length."""
    # Halves round up, not to even
    return max(math.floor((end - start) * fps + 0.5), minimum)


@dataclass(frozen=True)
class RenderedClip:
    """A rendered overlay clip positioned on the base timeline."""

    path: str
    start: float
    end: float
    index: int
    frame_count: int = 0


class ClipRenderer:
    """Runs the Remotion CLI against a prepared bundle."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def clip_path(self, output_dir: str, clip_index: int) -> Path:
        return Path(output_dir) / f"clip-{clip_index}.webm"

    def props_path(self, output_dir: str, clip_index: int) -> Path:
        return Path(output_dir) / f"clip-{clip_index}.props.json"

    def timeout_for(self, frame_count: int) -> float:
        return (
            self.settings.clip_render_timeout_base_s
            + frame_count * self.settings.clip_render_timeout_per_frame_s
        )

    def build_command(
        self,
        bundle: BundleHandle,
        props_path: Path,
        output_path: Path,
        frame_count: int,
    ) -> list[str]:
        """Build the Remotion render command without executing it."""
        return [
            self.settings.remotion_npx_path,
            "remotion", "render",
            bundle.serve_url,
            self.settings.remotion_composition_id,
            str(output_path),
            f"--props={props_path}",
            f"--codec={self.settings.render_clip_codec}",
            f"--pixel-format={self.settings.render_clip_pixel_format}",
            "--image-format=png",
            f"--concurrency={self.settings.remotion_concurrency}",
            f"--frames=0-{frame_count - 1}",
        ]

    def render_clip(
        self,
        program: str,
        frame_count: int,
        output_dir: str,
        clip_index: int,
        bundle: BundleHandle,
        *,
        start: float,
        end: float,
        fps: int = FPS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RenderedClip:
        """Render one clip into ``output_dir``.

        Args:
            program: Generated Remotion component source
            frame_count: Number of frames to render (>= 1)
            output_dir: Job workspace directory
            clip_index: Index used to name the output deterministically
            bundle: Prepared bundle from BundleCache
            start: Absolute start on the base timeline, in seconds
            end: Absolute end on the base timeline, in seconds
            fps: Frame rate the program is rendered at
            on_progress: Called with (rendered_frames, total_frames)

        Returns:
            RenderedClip pointing at the WebM file

        Raises:
            ClipRenderError: If the program cannot be rendered
        """
        if frame_count < 1:
            raise ClipRenderError(clip_index, f"frame_count must be >= 1, got {frame_count}")
        if not program or not program.strip():
            raise ClipRenderError(clip_index, "animation has no program")

        output_path = self.clip_path(output_dir, clip_index)
        props_path = self.props_path(output_dir, clip_index)
        output_path.unlink(missing_ok=True)

        props_path.write_text(
            json.dumps({
                "code": program,
                "durationInFrames": frame_count,
                "fps": fps,
                "width": self.settings.render_clip_width,
                "height": self.settings.render_clip_height,
            }),
            encoding="utf-8",
        )

        cmd = self.build_command(bundle, props_path, output_path, frame_count)
        timeout = self.timeout_for(frame_count)
        logger.info(f"[CLIP] Rendering clip {clip_index}: {frame_count} frames ({start:.2f}s-{end:.2f}s)")

        returncode, output, timed_out = self._run(cmd, timeout, frame_count, on_progress)

        if timed_out:
            raise ClipRenderError(clip_index, f"render timed out after {timeout:.0f}s")
        if returncode != 0:
            raise ClipRenderError(clip_index, f"exit {returncode}: {tail_output(output, max_lines=10)}")
        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise ClipRenderError(clip_index, "renderer produced no output file")

        logger.info(f"[CLIP] Clip {clip_index} rendered to: {output_path}")
        return RenderedClip(
            path=str(output_path),
            start=start,
            end=end,
            index=clip_index,
            frame_count=frame_count,
        )

    def _run(
        self,
        cmd: list[str],
        timeout: float,
        frame_count: int,
        on_progress: Optional[ProgressCallback],
    ) -> tuple[int, str, bool]:
        """Run the renderer, streaming its output for progress reporting."""
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=self.settings.remotion_project_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                # npx forks the node renderer; killing the group reaches it too
                start_new_session=True,
            )
        except FileNotFoundError:
            return 127, f"Remotion CLI not found: {cmd[0]}", False

        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            _kill_process_group(proc)

        timer = threading.Timer(timeout, _kill)
        timer.start()
        lines: deque[str] = deque(maxlen=50)
        try:
            for line in proc.stdout:
                lines.append(line)
                if on_progress is None:
                    continue
                match = _FRAME_PROGRESS_RE.search(line)
                if match and int(match.group(2)) == frame_count:
                    on_progress(int(match.group(1)), frame_count)
            proc.wait()
        finally:
            timer.cancel()
            if proc.poll() is None:
                _kill_process_group(proc)
                proc.wait()

        return proc.returncode, "".join(lines), timed_out.is_set()


def _kill_process_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
