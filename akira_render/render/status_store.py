"""Persisted status writes for a running render job.

The pipeline is the only writer of progress; the API only ever forces a job to
``error`` when it is cancelled. Every write is a conditional UPDATE so a
cancellation that lands between two pipeline steps is never overwritten, and
progress can only move forward.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from akira_render.exceptions import CancellationError, RenderConflictError
from akira_render.models.database import get_sync_session_maker
from akira_render.models.render_job import ACTIVE_STATUSES, RenderJob, RenderStatus

logger = logging.getLogger(__name__)

# Allowed source state for each forward transition
_ALLOWED_FROM: dict[RenderStatus, tuple[str, ...]] = {
    RenderStatus.RENDERING_CLIPS: (RenderStatus.PENDING.value,),
    RenderStatus.COMPOSING: (RenderStatus.RENDERING_CLIPS.value,),
}


def _as_uuid(job_id: str | uuid.UUID) -> uuid.UUID:
    return job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))


def _clamp(progress: int) -> int:
    return max(0, min(100, int(progress)))


def _monotonic(progress: int):
    """SQL expression keeping the larger of the stored and new progress."""
    return case((RenderJob.progress > progress, RenderJob.progress), else_=progress)


class JobStatusStore:
    """Status transitions for render jobs, backed by the sync database session."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or get_sync_session_maker()

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _update(self, job_id: str | uuid.UUID, *criteria, **values) -> bool:
        stmt = (
            update(RenderJob)
            .where(RenderJob.id == _as_uuid(job_id), *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as db:
            return db.execute(stmt).rowcount > 0

    def get_status(self, job_id: str | uuid.UUID) -> Optional[str]:
        with self._session() as db:
            return db.execute(
                select(RenderJob.status).where(RenderJob.id == _as_uuid(job_id))
            ).scalar_one_or_none()

    def is_cancelled(self, job_id: str | uuid.UUID) -> bool:
        """A job forced to ``error`` (or deleted) while running counts as cancelled."""
        status = self.get_status(job_id)
        return status is None or status == RenderStatus.ERROR.value

    def advance(self, job_id: str | uuid.UUID, status: RenderStatus, progress: int) -> None:
        """Move the job one step forward in its lifecycle.

        Raises:
            CancellationError: If the job was cancelled or deleted meanwhile
            RenderConflictError: If the transition is not allowed from the current state
        """
        allowed_from = _ALLOWED_FROM.get(status)
        if allowed_from is None:
            raise ValueError(f"advance() cannot move a job to {status.value}")

        progress = _clamp(progress)
        if self._update(
            job_id,
            RenderJob.status.in_(allowed_from),
            status=status.value,
            progress=_monotonic(progress),
        ):
            logger.info(f"[STATUS] Job {job_id} -> {status.value} ({progress}%)")
            return

        current = self.get_status(job_id)
        if current is None or current == RenderStatus.ERROR.value:
            raise CancellationError()
        raise RenderConflictError(f"Cannot move render {job_id} from {current} to {status.value}")

    def set_progress(self, job_id: str | uuid.UUID, progress: int) -> bool:
        """Raise progress of an active job. Lower values are ignored."""
        return self._update(
            job_id,
            RenderJob.status.in_(ACTIVE_STATUSES),
            progress=_monotonic(_clamp(progress)),
        )

    def complete(self, job_id: str | uuid.UUID, output_path: str) -> bool:
        """Mark a composing job completed. False if it was cancelled meanwhile."""
        completed = self._update(
            job_id,
            RenderJob.status == RenderStatus.COMPOSING.value,
            status=RenderStatus.COMPLETED.value,
            progress=100,
            output_path=output_path,
            error_message=None,
        )
        if completed:
            logger.info(f"[STATUS] Job {job_id} completed: {output_path}")
        return completed

    def fail(self, job_id: str | uuid.UUID, message: str) -> bool:
        """Mark an active job failed. A job already in ``error`` keeps its message."""
        failed = self._update(
            job_id,
            RenderJob.status.in_(ACTIVE_STATUSES),
            status=RenderStatus.ERROR.value,
            error_message=message,
            output_path=None,
        )
        if failed:
            logger.info(f"[STATUS] Job {job_id} failed: {message}")
        return failed
