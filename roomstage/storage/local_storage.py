"""Filesystem image storage for local development.

Files are written under <base_dir>/<owner_id>/ and served back by
GET /api/v1/files/{owner_id}/{filename}.
"""

import asyncio
import os
from typing import Optional

from roomstage.storage.base import FetchedImage, ImageStorage, UploadResult, detect_mime_type, extension_for

FILES_ROUTE = "/api/v1/files"


class LocalImageStorage(ImageStorage):
    """Stores images on local disk and hands out URLs served by this app."""

    def __init__(self, base_dir: str, public_base_url: str, download_timeout_seconds: float = 60.0):
        super().__init__(download_timeout_seconds)
        self._base_dir = base_dir
        self._public_base_url = public_base_url.rstrip("/")
        os.makedirs(self._base_dir, exist_ok=True)

    def get_path(self, owner_id: str, filename: str) -> Optional[str]:
        """Resolve a stored file, refusing anything outside the base dir."""
        base = os.path.realpath(self._base_dir)
        path = os.path.realpath(os.path.join(base, owner_id, filename))
        if not path.startswith(base + os.sep):
            return None
        return path

    def file_exists(self, owner_id: str, filename: str) -> bool:
        path = self.get_path(owner_id, filename)
        return path is not None and os.path.isfile(path)

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        owner_id: str,
        job_id: str,
        suffix: str = "staged",
    ) -> UploadResult:
        filename = f"{job_id}-{suffix}.{extension_for(mime_type)}"
        path = self.get_path(owner_id, filename)
        if path is None:
            return UploadResult(success=False, error=f"Invalid storage path for {owner_id}/{filename}")
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            return UploadResult(success=False, error=f"Failed to write {filename}: {exc}")
        return UploadResult(success=True, url=f"{self._public_base_url}{FILES_ROUTE}/{owner_id}/{filename}")

    async def fetch(self, url: str) -> FetchedImage:
        prefix = f"{self._public_base_url}{FILES_ROUTE}/"
        if url.startswith(prefix):
            owner_id, _, filename = url[len(prefix):].partition("/")
            path = self.get_path(owner_id, filename)
            if path is not None and os.path.isfile(path):
                with open(path, "rb") as f:
                    data = f.read()
                return FetchedImage(data=data, mime_type=detect_mime_type(data, "image/png"))
        return await super().fetch(url)

    @staticmethod
    def _write(path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as dst:
            dst.write(data)
