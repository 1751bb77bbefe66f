"""Inbound completion callbacks from async providers.

Unauthenticated; each provider checks its own signature.
"""

import logging

from fastapi import APIRouter, Depends, Request

from roomstage.api.deps import get_service
from roomstage.staging.service import StagingService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/{provider_name}")
async def provider_webhook(
    provider_name: str,
    request: Request,
    service: StagingService = Depends(get_service),
):
    raw_body = await request.body()
    outcome = await service.handle_provider_webhook(provider_name, raw_body, request.headers)
    return {"received": True, **outcome.to_dict()}
