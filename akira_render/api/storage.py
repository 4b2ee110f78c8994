"""Local storage API endpoints for development."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from akira_render.config import get_settings
from akira_render.services.storage_service import LocalStorageService, get_storage_service

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
}


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str):
    """Serve files from local storage."""
    storage = get_storage_service()
    if not get_settings().use_local_storage or not isinstance(storage, LocalStorageService):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    try:
        file_path = storage.get_file_path(storage_key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not file_path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return FileResponse(
        path=str(file_path),
        media_type=MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream"),
        filename=file_path.name,
    )
