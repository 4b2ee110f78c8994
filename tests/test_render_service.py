"""Tests for the render job facade used by the API."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from akira_render.exceptions import (
    CANCELLED_MESSAGE,
    ProjectNotFoundError,
    RenderConflictError,
    RenderDispatchError,
    RenderJobNotFoundError,
    RenderValidationError,
)
from akira_render.models.render_job import RenderStatus
from akira_render.render.status_store import JobStatusStore
from akira_render.services.render_service import RenderJobService

PROGRAM = "export default () => null;"


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.delete_files.return_value = 1
    storage.get_signed_url.return_value = "https://storage.example/signed/final-output.mp4"
    return storage


@pytest.fixture
def dispatch():
    return MagicMock()


@pytest.fixture
def service(async_session, storage, dispatch):
    return RenderJobService(async_session, storage=storage, dispatch=dispatch)


class TestStart:
    """Tests for RenderJobService.start."""

    @pytest.mark.asyncio
    async def test_creates_pending_job_and_dispatches(self, service, dispatch, make_project, load_job):
        project_id = make_project(animations=((0.0, 2.0, PROGRAM),))

        job = await service.start(project_id)

        assert job.status == "pending"
        assert job.progress == 0
        dispatch.assert_called_once_with(str(job.id))
        persisted = load_job(job.id)
        assert persisted.status == "pending"
        assert persisted.output_path is None

    @pytest.mark.asyncio
    async def test_unknown_project(self, service, dispatch):
        with pytest.raises(ProjectNotFoundError):
            await service.start(uuid.uuid4())
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_upload_source_rejected(self, service, dispatch, make_project):
        project_id = make_project(video_source="youtube", animations=((0.0, 2.0, PROGRAM),))

        with pytest.raises(RenderValidationError):
            await service.start(project_id)
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_storage_path_rejected(self, service, make_project):
        project_id = make_project(storage_path=None, animations=((0.0, 2.0, PROGRAM),))

        with pytest.raises(RenderValidationError):
            await service.start(project_id)

    @pytest.mark.asyncio
    async def test_requires_ready_animation_with_program(self, service, service_jobs, make_project):
        project_id = make_project(
            animations=(
                (0.0, 2.0, PROGRAM, "generating"),
                (3.0, 4.0, "   ", "ready"),
                (5.0, 6.0, None, "ready"),
            )
        )

        with pytest.raises(RenderValidationError):
            await service.start(project_id)
        assert await service_jobs(project_id) == []

    @pytest.mark.asyncio
    async def test_dispatch_failure_marks_job_failed(self, service, dispatch, make_project, load_job, service_jobs):
        dispatch.side_effect = ConnectionError("redis unavailable")
        project_id = make_project(animations=((0.0, 2.0, PROGRAM),))

        with pytest.raises(RenderDispatchError):
            await service.start(project_id)

        jobs = await service_jobs(project_id)
        assert len(jobs) == 1
        job = load_job(jobs[0].id)
        assert job.status == "error"
        assert "redis unavailable" in job.error_message


@pytest.fixture
def service_jobs(service):
    async def _jobs(project_id):
        return await service.list_for_project(project_id)

    return _jobs


class TestQueries:
    @pytest.mark.asyncio
    async def test_poll(self, service, make_project, make_job):
        project_id = make_project()
        job_id = make_job(project_id, status="rendering_clips", progress=40)

        job = await service.poll(job_id)

        assert job.status == "rendering_clips"
        assert job.progress == 40

    @pytest.mark.asyncio
    async def test_poll_sees_worker_updates(self, service, make_project, make_job, sync_session_factory):
        project_id = make_project()
        job_id = make_job(project_id)
        await service.poll(job_id)

        JobStatusStore(sync_session_factory).advance(job_id, RenderStatus.RENDERING_CLIPS, 5)

        job = await service.poll(job_id)
        assert job.status == "rendering_clips"
        assert job.progress == 5

    @pytest.mark.asyncio
    async def test_poll_unknown_job(self, service):
        with pytest.raises(RenderJobNotFoundError):
            await service.poll(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_poll_malformed_id(self, service):
        with pytest.raises(RenderJobNotFoundError):
            await service.poll("not-a-uuid")

    @pytest.mark.asyncio
    async def test_list_newest_first(self, service, make_project, make_job):
        project_id = make_project()
        now = datetime.now(timezone.utc)
        older = make_job(project_id, status="completed", progress=100, created_at=now - timedelta(hours=1))
        newer = make_job(project_id, created_at=now)

        jobs = await service.list_for_project(project_id)

        assert [job.id for job in jobs] == [newer, older]

    @pytest.mark.asyncio
    async def test_list_unknown_project(self, service):
        with pytest.raises(ProjectNotFoundError):
            await service.list_for_project(uuid.uuid4())


class TestCancel:
    """Tests for RenderJobService.cancel."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, service, make_project, make_job, load_job):
        job_id = make_job(make_project(), status="rendering_clips", progress=35)

        job = await service.cancel(job_id)

        assert job.status == "error"
        assert job.error_message == CANCELLED_MESSAGE
        persisted = load_job(job_id)
        assert persisted.status == "error"
        assert persisted.progress == 35

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, service, make_project, make_job):
        job_id = make_job(make_project())

        job = await service.cancel(job_id)

        assert job.error_message == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_cancel_twice_is_acknowledged(self, service, make_project, make_job):
        job_id = make_job(make_project(), status="composing", progress=80)

        await service.cancel(job_id)
        job = await service.cancel(job_id)

        assert job.status == "error"
        assert job.error_message == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_cancel_completed_job_rejected(self, service, make_project, make_job, load_job):
        job_id = make_job(make_project(), status="completed", progress=100, output_path="out.mp4")

        with pytest.raises(RenderConflictError):
            await service.cancel(job_id)
        assert load_job(job_id).status == "completed"

    @pytest.mark.asyncio
    async def test_cancel_failed_job_rejected(self, service, make_project, make_job):
        job_id = make_job(make_project(), status="error", error_message="Video composition failed")

        with pytest.raises(RenderConflictError):
            await service.cancel(job_id)


class TestDeleteAndDownload:
    @pytest.mark.asyncio
    async def test_delete_completed_job_removes_artifact(self, service, storage, make_project, make_job, load_job):
        job_id = make_job(make_project(), status="completed", progress=100, output_path="projects/p/out.mp4")

        await service.delete(job_id)

        storage.delete_files.assert_called_once_with(["projects/p/out.mp4"])
        assert load_job(job_id) is None

    @pytest.mark.asyncio
    async def test_delete_failed_job(self, service, storage, make_project, make_job, load_job):
        job_id = make_job(make_project(), status="error", error_message=CANCELLED_MESSAGE)

        await service.delete(job_id)

        storage.delete_files.assert_not_called()
        assert load_job(job_id) is None

    @pytest.mark.asyncio
    async def test_delete_running_job_rejected(self, service, make_project, make_job, load_job):
        job_id = make_job(make_project(), status="rendering_clips")

        with pytest.raises(RenderConflictError):
            await service.delete(job_id)
        assert load_job(job_id) is not None

    @pytest.mark.asyncio
    async def test_download_url(self, service, storage, make_project, make_job):
        job_id = make_job(make_project(), status="completed", progress=100, output_path="projects/p/out.mp4")

        url = await service.get_download_url(job_id)

        assert url == "https://storage.example/signed/final-output.mp4"
        storage.get_signed_url.assert_called_once_with("projects/p/out.mp4")

    @pytest.mark.asyncio
    async def test_download_url_requires_completed(self, service, make_project, make_job):
        job_id = make_job(make_project(), status="composing", progress=80)

        with pytest.raises(RenderConflictError):
            await service.get_download_url(job_id)
