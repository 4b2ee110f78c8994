"""Custom exceptions for the render service.

Request-level errors carry an HTTP status and a machine-readable code so the
API layer can surface them directly. Pipeline errors are persisted on the
render job as its ``error_message``.
"""

from typing import Any

CANCELLED_MESSAGE = "Render cancelled by user"
ALL_CLIPS_FAILED_MESSAGE = "All animation clips failed to render; nothing to compose"


class AkiraError(Exception):
    """Base exception for all render service errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error responses."""
        return {"code": self.code, "message": self.message}


# =============================================================================
# Request errors
# =============================================================================


class RenderValidationError(AkiraError):
    """Preconditions for starting a render are not met. No job is created."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Render request is invalid"


class ResourceNotFoundError(AkiraError):
    """Base class for resource not found errors."""

    status_code = 404


class ProjectNotFoundError(ResourceNotFoundError):
    code = "PROJECT_NOT_FOUND"
    message = "Project not found"

    def __init__(self, project_id: str | None = None):
        message = f"Project not found: {project_id}" if project_id else self.message
        super().__init__(message)


class RenderJobNotFoundError(ResourceNotFoundError):
    code = "RENDER_NOT_FOUND"
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class RenderConflictError(AkiraError):
    """The job is in a state that does not allow the requested operation."""

    code = "RENDER_CONFLICT"
    status_code = 409
    message = "Render job is not in a valid state for this operation"


class RenderDispatchError(AkiraError):
    code = "RENDER_DISPATCH_FAILED"
    status_code = 503
    message = "Could not schedule the render job"


# =============================================================================
# Pipeline errors
# =============================================================================


class ClipRenderError(AkiraError):
    """A single animation clip failed to render. Tolerated by the pipeline."""

    code = "CLIP_RENDER_FAILED"

    def __init__(self, clip_index: int, detail: str):
        self.clip_index = clip_index
        self.detail = detail
        super().__init__(f"Clip {clip_index} failed to render: {detail}")


class RenderPipelineError(AkiraError):
    """A fatal pipeline error. Aborts the job and is persisted on it."""

    code = "RENDER_FAILED"
    message = "Render failed"


class DownloadError(RenderPipelineError):
    code = "DOWNLOAD_FAILED"
    message = "Failed to download the base video"


class BundlePrepareError(RenderPipelineError):
    code = "BUNDLE_FAILED"
    message = "Failed to prepare the animation bundle"


class CompositionError(RenderPipelineError):
    code = "COMPOSITION_FAILED"
    message = "Video composition failed"

    def __init__(self, message: str | None = None, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class UploadError(RenderPipelineError):
    code = "UPLOAD_FAILED"
    message = "Failed to upload the rendered video"


class AllClipsFailedError(RenderPipelineError):
    code = "ALL_CLIPS_FAILED"
    message = ALL_CLIPS_FAILED_MESSAGE


class CancellationError(RenderPipelineError):
    code = "RENDER_CANCELLED"
    message = CANCELLED_MESSAGE
