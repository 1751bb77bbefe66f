"""Image storage interface shared by the local and Supabase backends."""

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    success: bool
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FetchedImage:
    data: bytes
    mime_type: str


class StorageError(Exception):
    """An image could not be fetched."""


def detect_mime_type(data: bytes, default: Optional[str] = None) -> Optional[str]:
    """Sniff the image format from its bytes; default when Pillow cannot tell."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format, default)
    except (UnidentifiedImageError, OSError):
        return default


def extension_for(mime_type: str) -> str:
    ext = mime_type.split("/")[-1] if "/" in mime_type else "png"
    return "jpg" if ext in ("jpeg", "jpg") else (ext or "png")


class ImageStorage(ABC):
    """Durable image storage: bytes in, retrievable URL out.

    upload/download_and_reupload report failures in UploadResult; fetch raises
    StorageError.
    """

    def __init__(self, download_timeout_seconds: float = 60.0):
        self._download_timeout = download_timeout_seconds

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        mime_type: str,
        owner_id: str,
        job_id: str,
        suffix: str = "staged",
    ) -> UploadResult:
        ...

    async def download_and_reupload(
        self, external_url: str, owner_id: str, job_id: str
    ) -> UploadResult:
        """Mirror a provider-hosted output into our storage."""
        try:
            image = await self._download(external_url)
        except StorageError as exc:
            logger.error(f"Download of {external_url} for job {job_id} failed: {exc}")
            return UploadResult(success=False, error=str(exc))
        return await self.upload(image.data, image.mime_type, owner_id, job_id)

    async def fetch(self, url: str) -> FetchedImage:
        """Read back an image we (or anyone) host, e.g. the original for a remix."""
        return await self._download(url)

    async def _download(self, url: str) -> FetchedImage:
        try:
            async with httpx.AsyncClient(timeout=self._download_timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to download {url}: {exc}") from exc
        if not response.is_success:
            raise StorageError(f"Failed to download: {response.status_code}")

        header_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not header_type.startswith("image/"):
            header_type = detect_mime_type(response.content, "image/png")
        return FetchedImage(data=response.content, mime_type=header_type)
