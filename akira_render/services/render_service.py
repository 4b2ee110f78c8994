"""Render job facade used by the API.

Creates render jobs, hands them to the background worker, and exposes
read-only status, cancellation, deletion and download of the result. The
pipeline owns every progress write; the only write made here to a running job
is forcing it to ``error`` on cancellation.
"""

import asyncio
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from akira_render.exceptions import (
    CANCELLED_MESSAGE,
    ProjectNotFoundError,
    RenderConflictError,
    RenderDispatchError,
    RenderJobNotFoundError,
    RenderValidationError,
)
from akira_render.models.animation import ANIMATION_READY, Animation
from akira_render.models.project import Project
from akira_render.models.render_job import ACTIVE_STATUSES, RenderJob, RenderStatus
from akira_render.services.storage_service import StorageBackend, get_storage_service

logger = logging.getLogger(__name__)

UPLOAD_SOURCE = "upload"

Dispatch = Callable[[str], None]


def dispatch_render_task(render_job_id: str) -> None:
    """Queue the render on the Celery worker."""
    from akira_render.tasks.render_task import render_overlays_task

    render_overlays_task.delay(render_job_id)


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class RenderJobService:
    """Service for render job lifecycle management."""

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageBackend | None = None,
        dispatch: Dispatch | None = None,
    ):
        self.db = db
        self._storage = storage
        self.dispatch = dispatch or dispatch_render_task

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            self._storage = get_storage_service()
        return self._storage

    # =========================================================================
    # Queries
    # =========================================================================

    async def _get_project(self, project_id: UUID | str) -> Project:
        project_uuid = _as_uuid(project_id)
        project = await self.db.get(Project, project_uuid) if project_uuid else None
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    async def _get_job(self, job_id: UUID | str) -> RenderJob:
        job_uuid = _as_uuid(job_id)
        job = (
            await self.db.get(RenderJob, job_uuid, populate_existing=True)
            if job_uuid
            else None
        )
        if job is None:
            raise RenderJobNotFoundError(str(job_id))
        return job

    async def _count_renderable_animations(self, project_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Animation)
            .where(
                Animation.project_id == project_id,
                Animation.status == ANIMATION_READY,
                Animation.remotion_code.is_not(None),
                func.length(func.trim(Animation.remotion_code)) > 0,
            )
        )
        return result.scalar_one()

    async def poll(self, job_id: UUID | str) -> RenderJob:
        """Current persisted state of a render job."""
        return await self._get_job(job_id)

    async def list_for_project(self, project_id: UUID | str) -> list[RenderJob]:
        """All render jobs of a project, newest first."""
        project = await self._get_project(project_id)
        result = await self.db.execute(
            select(RenderJob)
            .where(RenderJob.project_id == project.id)
            .order_by(RenderJob.created_at.desc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # Commands
    # =========================================================================

    async def start(self, project_id: UUID | str) -> RenderJob:
        """Create a pending render job and queue it. Returns without waiting.

        Raises:
            ProjectNotFoundError: If the project does not exist
            RenderValidationError: If the project has no uploaded video or
                no ready animation with a program
            RenderDispatchError: If the job could not be queued
        """
        project = await self._get_project(project_id)

        if project.video_source != UPLOAD_SOURCE or not project.storage_path:
            raise RenderValidationError(
                "Rendering requires an uploaded base video; "
                f"project video source is '{project.video_source}'"
            )

        if await self._count_renderable_animations(project.id) == 0:
            raise RenderValidationError("Project has no ready animations to render")

        job = RenderJob(project_id=project.id, status=RenderStatus.PENDING.value, progress=0)
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        logger.info(f"[RENDER] Created render job {job.id} for project {project.id}")

        try:
            await asyncio.to_thread(self.dispatch, str(job.id))
        except Exception as e:
            logger.exception(f"[RENDER] Failed to dispatch render job {job.id}")
            job.status = RenderStatus.ERROR.value
            job.error_message = f"Failed to schedule render: {e}"
            await self.db.commit()
            raise RenderDispatchError() from e

        return job

    async def cancel(self, job_id: UUID | str) -> RenderJob:
        """Force a non-terminal job to ``error``. Repeated cancels are acknowledged.

        Raises:
            RenderJobNotFoundError: If the job does not exist
            RenderConflictError: If the job already completed or failed
        """
        job = await self._get_job(job_id)
        result = await self.db.execute(
            update(RenderJob)
            .where(RenderJob.id == job.id, RenderJob.status.in_(ACTIVE_STATUSES))
            .values(
                status=RenderStatus.ERROR.value,
                error_message=CANCELLED_MESSAGE,
                output_path=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        job = await self._get_job(job.id)
        if result.rowcount > 0:
            logger.info(f"[RENDER] Cancelled render job {job.id}")
            return job

        if job.status == RenderStatus.ERROR.value and job.error_message == CANCELLED_MESSAGE:
            return job
        raise RenderConflictError(f"Cannot cancel a render that is {job.status}")

    async def delete(self, job_id: UUID | str) -> None:
        """Delete a finished job and its output artifact.

        Raises:
            RenderJobNotFoundError: If the job does not exist
            RenderConflictError: If the job is still running
        """
        job = await self._get_job(job_id)
        if not job.is_terminal:
            raise RenderConflictError(
                f"Cannot delete a render that is {job.status}; cancel it first"
            )

        if job.output_path:
            deleted = await asyncio.to_thread(self.storage.delete_files, [job.output_path])
            logger.info(f"[RENDER] Deleted {deleted} artifact(s) of render job {job.id}")

        await self.db.delete(job)
        await self.db.commit()

    async def get_download_url(self, job_id: UUID | str) -> str:
        """Signed, time-limited URL for the output of a completed job.

        Raises:
            RenderJobNotFoundError: If the job does not exist
            RenderConflictError: If the job is not completed
        """
        job = await self._get_job(job_id)
        if job.status != RenderStatus.COMPLETED.value or not job.output_path:
            raise RenderConflictError(f"Render is not completed (status: {job.status})")
        return await asyncio.to_thread(self.storage.get_signed_url, job.output_path)
