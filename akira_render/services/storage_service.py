"""Artifact storage for base videos and rendered outputs.

GCS in production, the local filesystem in development. Both expose the same
whole-object interface: download to a path, upload from a path, delete, and
signed time-limited download URLs.
"""

import logging
import shutil
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Protocol

from akira_render.config import get_settings

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def download_file(self, storage_key: str, local_path: str) -> str: ...

    def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str: ...

    def delete_files(self, storage_keys: Iterable[str]) -> int: ...

    def get_signed_url(self, storage_key: str, expiration_minutes: int | None = None) -> str: ...

    def file_exists(self, storage_key: str) -> bool: ...


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None) -> None:
        self.base_path = Path(base_path or get_settings().local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def get_file_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        return full_path

    def download_file(self, storage_key: str, local_path: str) -> str:
        """Copy a stored object to a local path."""
        shutil.copyfile(self.get_file_path(storage_key), local_path)
        return local_path

    def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Copy a local file into storage. Returns the storage key."""
        full_path = self.get_file_path(storage_key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, full_path)
        return storage_key

    def delete_files(self, storage_keys: Iterable[str]) -> int:
        deleted = 0
        for storage_key in storage_keys:
            full_path = self.get_file_path(storage_key)
            if full_path.exists():
                full_path.unlink()
                deleted += 1
        return deleted

    def get_signed_url(self, storage_key: str, expiration_minutes: int | None = None) -> str:
        """Local files are served by the dev server without signing."""
        return f"{get_settings().local_storage_base_url}/api/storage/files/{storage_key}"

    def file_exists(self, storage_key: str) -> bool:
        return self.get_file_path(storage_key).exists()


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self) -> None:
        from google.auth import compute_engine, default
        from google.auth.transport import requests as auth_requests
        from google.cloud import storage

        self.settings = get_settings()
        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

        self._credentials, _ = default()
        self._auth_request = auth_requests.Request()

        # Cloud Run credentials cannot sign locally; sign through IAM instead.
        self._sign_with_iam = isinstance(self._credentials, compute_engine.Credentials)

    @property
    def client(self):
        if self._client is None:
            if self.settings.gcs_project_id:
                self._client = self._storage.Client(project=self.settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def download_file(self, storage_key: str, local_path: str) -> str:
        """Download a file from GCS to local path."""
        blob = self.bucket.blob(storage_key)
        blob.download_to_filename(local_path, timeout=self.settings.download_timeout_s)
        return local_path

    def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload a local file to GCS. Returns the storage key."""
        blob = self.bucket.blob(storage_key)
        blob.upload_from_filename(
            local_path,
            content_type=content_type,
            timeout=self.settings.upload_timeout_s,
        )
        return storage_key

    def delete_files(self, storage_keys: Iterable[str]) -> int:
        deleted = 0
        for storage_key in storage_keys:
            blob = self.bucket.blob(storage_key)
            if blob.exists():
                blob.delete()
                deleted += 1
            else:
                logger.warning(f"[STORAGE] Object already missing: {storage_key}")
        return deleted

    def get_signed_url(self, storage_key: str, expiration_minutes: int | None = None) -> str:
        """Generate a V4 signed download URL."""
        minutes = expiration_minutes or self.settings.signed_url_expiration_minutes
        blob = self.bucket.blob(storage_key)

        if self._sign_with_iam:
            if not self._credentials.valid:
                self._credentials.refresh(self._auth_request)
            return blob.generate_signed_url(
                version="v4",
                expiration=timedelta(minutes=minutes),
                method="GET",
                service_account_email=self._credentials.service_account_email,
                access_token=self._credentials.token,
            )

        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(minutes=minutes),
            method="GET",
        )

    def file_exists(self, storage_key: str) -> bool:
        return self.bucket.blob(storage_key).exists()


@lru_cache
def get_storage_service() -> StorageBackend:
    """Use LocalStorageService or GCSStorageService based on config."""
    if get_settings().use_local_storage:
        return LocalStorageService()
    return GCSStorageService()
