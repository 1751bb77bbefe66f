"""Supabase Storage bucket backend."""

import asyncio
import logging

from supabase import Client

from roomstage.storage.base import ImageStorage, UploadResult, extension_for

logger = logging.getLogger(__name__)


class SupabaseImageStorage(ImageStorage):
    """Uploads to a Supabase bucket and returns public URLs."""

    def __init__(self, client: Client, bucket: str = "staging-images", download_timeout_seconds: float = 60.0):
        super().__init__(download_timeout_seconds)
        self._client = client
        self._bucket = bucket

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        owner_id: str,
        job_id: str,
        suffix: str = "staged",
    ) -> UploadResult:
        path = f"{owner_id}/{job_id}-{suffix}.{extension_for(mime_type)}"
        bucket = self._client.storage.from_(self._bucket)
        try:
            await asyncio.to_thread(
                bucket.upload,
                path,
                data,
                {"content-type": mime_type, "upsert": "true"},
            )
            url = bucket.get_public_url(path)
        except Exception as exc:
            logger.error(f"Supabase upload of {path} failed: {exc}")
            return UploadResult(success=False, error=str(exc) or "Upload failed")
        return UploadResult(success=True, url=url)
