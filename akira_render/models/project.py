import uuid

from sqlalchemy import Float, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from akira_render.models.base import Base, TimestampMixin, UUIDMixin


class Project(Base, UUIDMixin, TimestampMixin):
    """A video project. Owned by the project service; read-only for rendering."""

    __tablename__ = "video_projects"

    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Source: upload, youtube. Only uploaded videos can be rendered.
    video_source: Mapped[str] = mapped_column(String(20), default="upload")
    storage_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Status: processing, ready, error
    status: Mapped[str] = mapped_column(String(50), default="processing")

    animations: Mapped[list["Animation"]] = relationship(  # noqa: F821
        "Animation", back_populates="project", cascade="all, delete-orphan"
    )
    render_jobs: Mapped[list["RenderJob"]] = relationship(  # noqa: F821
        "RenderJob", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.id} ({self.video_source})>"
