from akira_render.models.animation import Animation
from akira_render.models.base import Base
from akira_render.models.project import Project
from akira_render.models.render_job import RenderJob, RenderStatus

__all__ = [
    "Base",
    "Project",
    "Animation",
    "RenderJob",
    "RenderStatus",
]
