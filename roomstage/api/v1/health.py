"""Health check endpoints."""

import platform
import sys

from fastapi import APIRouter, Depends

from roomstage.api.deps import get_service
from roomstage.staging.service import StagingService

router = APIRouter()
providers_router = APIRouter()


@router.get("/health")
async def health_check():
    """Service liveness and runtime info."""
    return {
        "status": "healthy",
        "python_version": sys.version,
        "platform": platform.platform(),
    }


@providers_router.get("/providers/health")
async def providers_health(service: StagingService = Depends(get_service)):
    """Cached-or-fresh health of every registered staging provider."""
    providers = await service.providers_health()
    return {
        "providers": providers,
        "default_provider": service.router.config.default_provider,
        "fallback_provider": service.router.config.fallback_provider if service.router.config.enable_fallback else None,
    }
