import uuid
from enum import Enum

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from akira_render.models.base import Base, TimestampMixin, UUIDMixin


class RenderStatus(str, Enum):
    """Render job lifecycle. Transitions only move forward."""

    PENDING = "pending"
    RENDERING_CLIPS = "rendering_clips"
    COMPOSING = "composing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.COMPLETED, RenderStatus.ERROR)


TERMINAL_STATUSES = (RenderStatus.COMPLETED.value, RenderStatus.ERROR.value)
ACTIVE_STATUSES = (
    RenderStatus.PENDING.value,
    RenderStatus.RENDERING_CLIPS.value,
    RenderStatus.COMPOSING.value,
)


class RenderJob(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "renders"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("video_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(50), default=RenderStatus.PENDING.value, index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Set only when completed / only when failed
    output_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    project: Mapped["Project"] = relationship("Project", back_populates="render_jobs")  # noqa: F821

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} ({self.status} {self.progress}%)>"
