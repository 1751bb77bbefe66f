"""Serve images written by LocalImageStorage."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from roomstage.api.deps import get_service
from roomstage.staging.service import StagingService
from roomstage.storage.local_storage import LocalImageStorage

router = APIRouter()

MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}


@router.get("/files/{owner_id}/{filename}")
async def get_file(owner_id: str, filename: str, service: StagingService = Depends(get_service)):
    storage = service.storage
    if not isinstance(storage, LocalImageStorage) or not storage.file_exists(owner_id, filename):
        raise HTTPException(status_code=404, detail="File not found")

    path = storage.get_path(owner_id, filename)
    media_type = MEDIA_TYPES.get(filename.rsplit(".", 1)[-1].lower(), "application/octet-stream")
    return FileResponse(path, media_type=media_type, filename=filename)
