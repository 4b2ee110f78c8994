"""
Render pipeline for composing animation overlays onto a base video.

This module orchestrates one render job end to end:
1. Download the base video into a private workspace
2. Prepare the Remotion bundle (shared across clips and jobs)
3. Render every animation to a transparent clip, tolerating individual failures
4. Composite the surviving clips onto the base video
5. Upload the result and mark the job completed

Progress is persisted at fixed milestones:
    5 (downloading) -> 10 (bundling) -> 15..75 (clips) -> 75 (composing)
    -> 90 (uploading) -> 100 (completed)

Cancellation is cooperative: the persisted status is checked between steps
and before every clip. A running subprocess is never interrupted; the job stops
at the next checkpoint.
"""

import logging
import queue
import tempfile
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from akira_render.config import Settings, get_settings
from akira_render.exceptions import (
    AllClipsFailedError,
    CancellationError,
    ClipRenderError,
    DownloadError,
    RenderPipelineError,
    UploadError,
)
from akira_render.models.animation import Animation
from akira_render.models.render_job import RenderStatus
from akira_render.render.bundle_cache import BundleCache, BundleHandle
from akira_render.render.clip_renderer import ClipRenderer, RenderedClip, frames_for_window
from akira_render.render.compositor import OverlayCompositor
from akira_render.render.status_store import JobStatusStore
from akira_render.services.storage_service import StorageBackend

logger = logging.getLogger(__name__)

PROGRESS_DOWNLOADING = 5
PROGRESS_BUNDLING = 10
PROGRESS_CLIPS_START = 15
PROGRESS_COMPOSING = 75
PROGRESS_UPLOADING = 90

# How often the orchestrator drains frame progress from clip workers
PROGRESS_POLL_INTERVAL_S = 1.0

BASE_VIDEO_FILENAME = "original.mp4"


@dataclass(frozen=True)
class AnimationSpec:
    """One overlay to render: a program and its window on the base timeline."""

    index: int
    start: float
    end: float
    program: Optional[str]

    @property
    def has_program(self) -> bool:
        return bool(self.program and self.program.strip())

    @classmethod
    def from_models(cls, animations: Iterable[Animation]) -> list["AnimationSpec"]:
        """Index animations by start time, then creation order."""
        ordered = sorted(animations, key=lambda a: (a.timestamp_start, a.created_at))
        return [
            cls(
                index=i,
                start=float(a.timestamp_start),
                end=float(a.timestamp_end),
                program=a.remotion_code,
            )
            for i, a in enumerate(ordered)
        ]


@dataclass
class ClipOutcome:
    """Result of one clip attempt. Exactly one of clip/error is set unless skipped."""

    index: int
    clip: Optional[RenderedClip] = None
    error: Optional[ClipRenderError] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.clip is not None


class RenderPipeline:
    """Runs one render job. Not reusable across jobs."""

    def __init__(
        self,
        job_id: str,
        project_id: str,
        status_store: JobStatusStore,
        storage: StorageBackend,
        bundle_cache: Optional[BundleCache] = None,
        clip_renderer: Optional[ClipRenderer] = None,
        compositor: Optional[OverlayCompositor] = None,
        settings: Optional[Settings] = None,
    ):
        self.job_id = str(job_id)
        self.project_id = str(project_id)
        self.status_store = status_store
        self.storage = storage
        self.settings = settings or get_settings()
        self.bundle_cache = bundle_cache or BundleCache(self.settings)
        self.clip_renderer = clip_renderer or ClipRenderer(self.settings)
        self.compositor = compositor or OverlayCompositor(settings=self.settings)

        self.work_dir: Optional[str] = None
        self._cancelled = threading.Event()

    def output_storage_key(self) -> str:
        return (
            f"projects/{self.project_id}/renders/{self.job_id}/"
            f"{OverlayCompositor.OUTPUT_FILENAME}"
        )

    def run(self, base_storage_key: str, animations: Sequence[AnimationSpec]) -> str:
        """Render the job and return the storage key of the uploaded output.

        Any failure is persisted on the job before it is re-raised. The
        workspace is removed on every exit path.

        Raises:
            RenderPipelineError: On a fatal step failure or cancellation
        """
        logger.info(
            f"[RENDER] Job {self.job_id}: {len(animations)} animations, base={base_storage_key}"
        )
        try:
            with tempfile.TemporaryDirectory(prefix=f"akira_render_{self.job_id}_") as work_dir:
                self.work_dir = work_dir
                return self._execute(work_dir, base_storage_key, animations)
        except CancellationError as e:
            logger.info(f"[RENDER] Job {self.job_id} cancelled")
            self.status_store.fail(self.job_id, e.message)
            raise
        except RenderPipelineError as e:
            logger.error(f"[RENDER] Job {self.job_id} failed: {e.message}")
            self.status_store.fail(self.job_id, e.message)
            raise
        except Exception as e:
            logger.exception(f"[RENDER] Job {self.job_id} failed unexpectedly")
            self.status_store.fail(self.job_id, str(e) or e.__class__.__name__)
            raise

    def _execute(
        self,
        work_dir: str,
        base_storage_key: str,
        animations: Sequence[AnimationSpec],
    ) -> str:
        self.status_store.advance(self.job_id, RenderStatus.RENDERING_CLIPS, PROGRESS_DOWNLOADING)

        base_video_path = self._download_base(base_storage_key, work_dir)
        self._checkpoint()

        self.status_store.set_progress(self.job_id, PROGRESS_BUNDLING)
        bundle = self.bundle_cache.prepare()
        self.status_store.set_progress(self.job_id, PROGRESS_CLIPS_START)

        outcomes = self._render_clips(animations, bundle, work_dir)
        clips = [outcome.clip for outcome in outcomes if outcome.ok]
        failed = [outcome for outcome in outcomes if outcome.error is not None]
        for outcome in failed:
            logger.warning(f"[RENDER] Excluding clip {outcome.index}: {outcome.error.detail}")
        if not clips:
            raise AllClipsFailedError()
        logger.info(f"[RENDER] {len(clips)} clips rendered, {len(failed)} failed")

        self._checkpoint()
        self.status_store.advance(self.job_id, RenderStatus.COMPOSING, PROGRESS_COMPOSING)
        composite = self.compositor.compose(base_video_path, clips, work_dir)

        self.status_store.set_progress(self.job_id, PROGRESS_UPLOADING)
        output_key = self._upload_output(str(composite.path))

        if not self.status_store.complete(self.job_id, output_key):
            # Cancelled while uploading; an artifact must not outlive a non-completed job
            self._discard_output(output_key)
            raise CancellationError()

        logger.info(f"[RENDER] Job {self.job_id} completed: {output_key}")
        return output_key

    def _checkpoint(self) -> None:
        """Raise CancellationError if the job was cancelled."""
        if self._cancelled.is_set():
            raise CancellationError()
        if self.status_store.is_cancelled(self.job_id):
            self._cancelled.set()
            raise CancellationError()

    def _download_base(self, storage_key: str, work_dir: str) -> str:
        local_path = str(Path(work_dir) / BASE_VIDEO_FILENAME)
        logger.info(f"[RENDER] Downloading base video: {storage_key}")
        try:
            self.storage.download_file(storage_key, local_path)
        except Exception as e:
            raise DownloadError(f"Failed to download base video {storage_key}: {e}") from e

        path = Path(local_path)
        if not path.is_file() or path.stat().st_size == 0:
            raise DownloadError(f"Downloaded base video is empty: {storage_key}")
        return local_path

    def _render_clips(
        self,
        animations: Sequence[AnimationSpec],
        bundle: BundleHandle,
        work_dir: str,
    ) -> list[ClipOutcome]:
        """Render every animation with a program; failures are collected, not raised."""
        renderable = [spec for spec in animations if spec.has_program]
        for spec in animations:
            if not spec.has_program:
                logger.warning(f"[RENDER] Skipping animation {spec.index}: no program")

        total = len(renderable)
        if total == 0:
            return []

        workers = max(1, min(self.settings.render_parallel_clips, total))
        logger.info(f"[RENDER] Rendering {total} clips with {workers} worker(s)")

        outcomes: list[ClipOutcome] = []
        # Workers only enqueue (clip index, fraction); progress is written from this thread
        frame_updates: queue.Queue[tuple[int, float]] = queue.Queue()
        fractions: dict[int, float] = {}
        written = PROGRESS_CLIPS_START

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clip") as pool:
            pending = {
                pool.submit(self._render_one, spec, bundle, work_dir, frame_updates.put)
                for spec in renderable
            }
            while pending:
                done, pending = wait(pending, timeout=PROGRESS_POLL_INTERVAL_S, return_when=FIRST_COMPLETED)
                while True:
                    try:
                        index, fraction = frame_updates.get_nowait()
                    except queue.Empty:
                        break
                    fractions[index] = max(fractions.get(index, 0.0), fraction)
                for future in done:
                    outcome = future.result()
                    outcomes.append(outcome)
                    if outcome.skipped:
                        fractions.pop(outcome.index, None)
                    else:
                        fractions[outcome.index] = 1.0

                progress = PROGRESS_CLIPS_START + int(
                    sum(fractions.values()) / total * (PROGRESS_COMPOSING - PROGRESS_CLIPS_START)
                )
                if progress > written:
                    self.status_store.set_progress(self.job_id, progress)
                    written = progress

        if self._cancelled.is_set():
            raise CancellationError()

        return sorted(outcomes, key=lambda outcome: outcome.index)

    def _render_one(
        self,
        spec: AnimationSpec,
        bundle: BundleHandle,
        work_dir: str,
        report: Callable[[tuple[int, float]], None],
    ) -> ClipOutcome:
        try:
            self._checkpoint()
        except CancellationError:
            return ClipOutcome(index=spec.index, skipped=True)

        frame_count = frames_for_window(
            spec.start,
            spec.end,
            fps=self.settings.render_fps,
            minimum=self.settings.render_min_clip_frames,
        )
        try:
            clip = self.clip_renderer.render_clip(
                spec.program,
                frame_count,
                work_dir,
                spec.index,
                bundle,
                start=spec.start,
                end=spec.end,
                fps=self.settings.render_fps,
                on_progress=lambda done, total: report((spec.index, done / total)),
            )
            return ClipOutcome(index=spec.index, clip=clip)
        except ClipRenderError as e:
            logger.warning(f"[RENDER] {e.message}")
            return ClipOutcome(index=spec.index, error=e)
        except Exception as e:
            logger.exception(f"[RENDER] Clip {spec.index} raised unexpectedly")
            return ClipOutcome(index=spec.index, error=ClipRenderError(spec.index, str(e)))

    def _upload_output(self, local_path: str) -> str:
        storage_key = self.output_storage_key()
        logger.info(f"[RENDER] Uploading output: {storage_key}")
        try:
            return self.storage.upload_file(local_path, storage_key, "video/mp4")
        except Exception as e:
            raise UploadError(f"Failed to upload rendered video: {e}") from e

    def _discard_output(self, storage_key: str) -> None:
        try:
            self.storage.delete_files([storage_key])
        except Exception:
            logger.exception(f"[RENDER] Could not delete orphaned output: {storage_key}")
