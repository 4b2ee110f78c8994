"""
Pytest fixtures for Akira render tests.

Database tests share one SQLite file between a sync engine (what the worker
uses) and an aiosqlite engine (what the API uses).

Tests that shell out to FFmpeg are marked with @pytest.mark.requires_ffmpeg
and skipped when ffmpeg/ffprobe with libvpx are not installed.
"""

import shutil
import subprocess
from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from akira_render.config import Settings
from akira_render.models import Animation, Base, Project, RenderJob


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe with libvpx (skipped otherwise)",
    )


def _ffmpeg_available() -> bool:
    if not shutil.which("ffmpeg") or not shutil.which("ffprobe"):
        return False
    result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-encoders"],
        capture_output=True,
        text=True,
        timeout=30,
    )
    return "libvpx" in result.stdout and "libx264" in result.stdout


requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe with libvpx and libx264 not available",
)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated to the test's temp directory."""
    return Settings(
        local_storage_path=str(tmp_path / "storage"),
        remotion_project_dir=str(tmp_path / "remotion"),
        remotion_bundle_cache_dir=str(tmp_path / "bundles"),
        render_parallel_clips=1,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "akira.db"


@pytest.fixture
def sync_session_factory(db_path: Path) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield sessionmaker(engine, class_=Session, expire_on_commit=False)
    engine.dispose()


@pytest_asyncio.fixture
async def async_session(
    db_path: Path, sync_session_factory: sessionmaker[Session]
) -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def make_project(sync_session_factory: sessionmaker[Session]) -> Callable[..., Any]:
    """Insert a project with animations; returns its id.

    Animations are (start, end, code) or (start, end, code, status) tuples.
    """

    def _make_project(
        *,
        video_source: str = "upload",
        storage_path: str | None = "uploads/base.mp4",
        animations: tuple = (),
    ):
        with sync_session_factory() as db:
            project = Project(
                title="Demo",
                video_source=video_source,
                storage_path=storage_path,
                status="ready",
            )
            db.add(project)
            db.flush()
            for start, end, code, *rest in animations:
                db.add(
                    Animation(
                        project_id=project.id,
                        timestamp_start=start,
                        timestamp_end=end,
                        remotion_code=code,
                        status=rest[0] if rest else "ready",
                    )
                )
            db.commit()
            return project.id

    return _make_project


@pytest.fixture
def make_job(sync_session_factory: sessionmaker[Session]) -> Callable[..., Any]:
    """Insert a render job for a project; returns its id."""

    def _make_job(project_id, status: str = "pending", progress: int = 0, **fields):
        with sync_session_factory() as db:
            job = RenderJob(project_id=project_id, status=status, progress=progress, **fields)
            db.add(job)
            db.commit()
            return job.id

    return _make_job


@pytest.fixture
def load_job(sync_session_factory: sessionmaker[Session]) -> Callable[..., RenderJob | None]:
    def _load_job(job_id) -> RenderJob | None:
        with sync_session_factory() as db:
            return db.get(RenderJob, job_id)

    return _load_job
