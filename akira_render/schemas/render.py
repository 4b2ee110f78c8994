from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class RenderStartResponse(BaseModel):
    render_id: UUID


class RenderStatusResponse(BaseModel):
    status: str
    progress: int
    error_message: str | None
    output_path: str | None

    class Config:
        from_attributes = True


class RenderJobResponse(BaseModel):
    id: UUID
    project_id: UUID
    status: str
    progress: int
    error_message: str | None
    output_path: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DownloadUrlResponse(BaseModel):
    download_url: str


class OkResponse(BaseModel):
    ok: bool = True
