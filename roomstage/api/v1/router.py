"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from roomstage.api.v1.health import providers_router
from roomstage.api.v1.staging import router as staging_router
from roomstage.api.v1.webhooks import router as webhooks_router
from roomstage.api.v1.files import router as files_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(providers_router, tags=["health"])
v1_router.include_router(staging_router, tags=["staging"])
v1_router.include_router(webhooks_router, tags=["webhooks"])
v1_router.include_router(files_router, tags=["files"])
