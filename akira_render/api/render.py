"""Render API endpoints - jobs run on the Celery worker."""

import logging
from uuid import UUID

from fastapi import APIRouter, status

from akira_render.api.deps import RenderService
from akira_render.schemas.render import (
    DownloadUrlResponse,
    OkResponse,
    RenderJobResponse,
    RenderStartResponse,
    RenderStatusResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/projects/{project_id}/renders",
    response_model=RenderStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_render(project_id: UUID, service: RenderService) -> RenderStartResponse:
    """
    Start a render job for a project.

    Returns as soon as the job is queued; poll the render for progress.
    """
    job = await service.start(project_id)
    return RenderStartResponse(render_id=job.id)


@router.get("/projects/{project_id}/renders", response_model=list[RenderJobResponse])
async def list_renders(project_id: UUID, service: RenderService) -> list[RenderJobResponse]:
    jobs = await service.list_for_project(project_id)
    return [RenderJobResponse.model_validate(job) for job in jobs]


@router.get("/renders/{render_id}", response_model=RenderStatusResponse)
async def get_render_status(render_id: UUID, service: RenderService) -> RenderStatusResponse:
    job = await service.poll(render_id)
    return RenderStatusResponse.model_validate(job)


@router.post("/renders/{render_id}/cancel", response_model=OkResponse)
async def cancel_render(render_id: UUID, service: RenderService) -> OkResponse:
    """Cancel a running render. It stops at its next checkpoint."""
    await service.cancel(render_id)
    return OkResponse()


@router.delete("/renders/{render_id}", response_model=OkResponse)
async def delete_render(render_id: UUID, service: RenderService) -> OkResponse:
    await service.delete(render_id)
    return OkResponse()


@router.get("/renders/{render_id}/download", response_model=DownloadUrlResponse)
async def get_download_url(render_id: UUID, service: RenderService) -> DownloadUrlResponse:
    """Get a signed download URL for a completed render."""
    download_url = await service.get_download_url(render_id)
    return DownloadUrlResponse(download_url=download_url)
