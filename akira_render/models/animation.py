import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from akira_render.models.base import Base, UUIDMixin, utcnow

ANIMATION_READY = "ready"


class Animation(Base, UUIDMixin):
    """An AI-generated overlay placed on the base video timeline."""

    __tablename__ = "animations"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("video_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Absolute window on the base timeline, in seconds
    timestamp_start: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp_end: Mapped[float] = mapped_column(Float, nullable=False)

    # Generated Remotion program
    remotion_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    asset_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Status: pending, generating, ready, error
    status: Mapped[str] = mapped_column(String(50), default="pending", index=True)
    prompt_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    animation_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    project: Mapped["Project"] = relationship("Project", back_populates="animations")  # noqa: F821

    @property
    def is_renderable(self) -> bool:
        return self.status == ANIMATION_READY and bool(self.remotion_code and self.remotion_code.strip())

    def __repr__(self) -> str:
        return f"<Animation {self.id} {self.timestamp_start}-{self.timestamp_end}s ({self.status})>"
