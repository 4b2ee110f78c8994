"""Celery task for overlay rendering."""

import logging
from uuid import UUID

from sqlalchemy import select

from akira_render.celery_app import celery_app
from akira_render.exceptions import RenderPipelineError
from akira_render.models.animation import ANIMATION_READY, Animation
from akira_render.models.database import get_sync_db
from akira_render.models.project import Project
from akira_render.models.render_job import RenderJob, RenderStatus
from akira_render.render.pipeline import AnimationSpec, RenderPipeline
from akira_render.render.status_store import JobStatusStore
from akira_render.services.storage_service import get_storage_service

logger = logging.getLogger(__name__)


def load_render_inputs(render_job_id: str) -> tuple[RenderJob, Project, list[AnimationSpec]] | None:
    """Load the job, its project and the ready animations.

    Animations are ordered by start; equal starts keep creation order.
    """
    with get_sync_db() as db:
        render_job = db.execute(
            select(RenderJob).where(RenderJob.id == UUID(render_job_id))
        ).scalar_one_or_none()
        if render_job is None:
            return None

        project = db.execute(
            select(Project).where(Project.id == render_job.project_id)
        ).scalar_one_or_none()
        if project is None:
            return None

        animations = db.execute(
            select(Animation)
            .where(Animation.project_id == project.id, Animation.status == ANIMATION_READY)
            .order_by(Animation.timestamp_start, Animation.created_at, Animation.id)
        ).scalars().all()

        return render_job, project, AnimationSpec.from_models(animations)


@celery_app.task(bind=True)
def render_overlays_task(self, render_job_id: str) -> dict:
    """
    Execute an overlay render as a Celery task.

    Failures are persisted on the job by the pipeline and never retried.

    Args:
        render_job_id: UUID of the RenderJob to process

    Returns:
        dict with status and output information
    """
    status_store = JobStatusStore()
    inputs = load_render_inputs(render_job_id)

    if inputs is None:
        logger.warning(f"[RENDER] Job {render_job_id} or its project not found")
        status_store.fail(render_job_id, "Render job or project not found")
        return {"status": "error", "message": "Render job or project not found"}

    render_job, project, animations = inputs
    if render_job.status != RenderStatus.PENDING.value:
        logger.info(f"[RENDER] Job {render_job_id} is {render_job.status}, skipping")
        return {"status": render_job.status, "message": "Job is not pending"}

    if not project.storage_path:
        status_store.fail(render_job_id, "Project has no uploaded video")
        return {"status": "error", "message": "Project has no uploaded video"}

    pipeline = RenderPipeline(
        job_id=render_job_id,
        project_id=str(project.id),
        status_store=status_store,
        storage=get_storage_service(),
    )

    try:
        output_key = pipeline.run(project.storage_path, animations)
    except RenderPipelineError as e:
        return {"status": "error", "code": e.code, "error": e.message}

    return {"status": "completed", "output_key": output_key}
