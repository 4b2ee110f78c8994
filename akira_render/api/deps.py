from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from akira_render.models.database import get_db
from akira_render.services.render_service import RenderJobService
from akira_render.services.storage_service import StorageBackend, get_storage_service

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_storage() -> StorageBackend:
    return get_storage_service()


def get_render_service(
    db: DbSession,
    storage: Annotated[StorageBackend, Depends(get_storage)],
) -> RenderJobService:
    return RenderJobService(db, storage=storage)


RenderService = Annotated[RenderJobService, Depends(get_render_service)]
