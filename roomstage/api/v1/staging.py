"""Staging API: submit jobs, poll status, remix, manage versions."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from roomstage.api.deps import get_service
from roomstage.auth.supabase_auth import get_current_user_id
from roomstage.staging.service import StagingService
from roomstage.staging.views import job_view

router = APIRouter()


class RemixRequest(BaseModel):
    room_type: str
    furniture_style: str
    property_id: Optional[str] = None
    provider: Optional[str] = None


@router.post("/staging")
async def submit_staging(
    image: UploadFile = File(...),
    room_type: str = Form(...),
    styles: List[str] = Form(...),
    property_id: Optional[str] = Form(None),
    declutter_first: bool = Form(False),
    provider: Optional[str] = Form(None),
    mask: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    service: StagingService = Depends(get_service),
):
    """Stage one room photo in one or more styles. One job per style."""
    data = await image.read()
    mask_data = await mask.read() if mask is not None else None
    result = await service.submit_staging(
        user_id=user_id,
        image=data,
        mime_type=image.content_type or "",
        room_type=room_type,
        styles=styles,
        property_id=property_id,
        mask=mask_data or None,
        declutter_first=declutter_first,
        preferred_provider=provider,
    )
    return result.to_dict()


@router.get("/staging/{job_id}")
async def get_staging_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: StagingService = Depends(get_service),
):
    """Current job state. Safe to poll; terminal results do not change."""
    return await service.get_job_status(job_id, user_id)


@router.post("/staging/{job_id}/remix")
async def remix_staging_job(
    job_id: str,
    request: RemixRequest,
    user_id: str = Depends(get_current_user_id),
    service: StagingService = Depends(get_service),
):
    handle = await service.remix(
        job_id,
        user_id,
        room_type=request.room_type,
        furniture_style=request.furniture_style,
        property_id=request.property_id,
        preferred_provider=request.provider,
    )
    return handle.to_dict()


@router.put("/staging/{job_id}/primary")
async def set_primary_version(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: StagingService = Depends(get_service),
):
    result = service.set_primary_version(job_id, user_id)
    if not result.success:
        raise HTTPException(status_code=500, detail=f"Failed to set primary version: {result.error}")
    return {"success": True, "job_id": job_id}


@router.get("/staging/{job_id}/versions")
async def get_versions(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: StagingService = Depends(get_service),
):
    listing = service.get_versions(job_id, user_id)
    return {
        "version_group_id": listing.version_group_id,
        "versions": [job_view(job) for job in listing.versions],
        "total": listing.total,
    }
