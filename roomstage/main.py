"""Roomstage Staging Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roomstage.config import settings
from roomstage.api.v1.router import v1_router
from roomstage.api.v1.health import router as health_root_router
from roomstage.jobs.store import JobStoreError
from roomstage.providers.router import RoutingError
from roomstage.staging.errors import (
    JobNotFoundError,
    StagingRequestError,
    UnknownProviderError,
    WebhookAuthError,
)
from roomstage.staging.factory import build_service
from roomstage.staging.service import StagingService

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RoutingError)
    async def routing_error(request: Request, exc: RoutingError):
        logger.warning(str(exc))
        return _error(503, exc)

    @app.exception_handler(JobNotFoundError)
    async def job_not_found(request: Request, exc: JobNotFoundError):
        return _error(404, exc)

    @app.exception_handler(UnknownProviderError)
    async def unknown_provider(request: Request, exc: UnknownProviderError):
        return _error(404, exc)

    @app.exception_handler(StagingRequestError)
    async def bad_request(request: Request, exc: StagingRequestError):
        return _error(400, exc)

    @app.exception_handler(WebhookAuthError)
    async def bad_signature(request: Request, exc: WebhookAuthError):
        logger.warning(str(exc))
        return _error(401, exc)

    @app.exception_handler(JobStoreError)
    async def store_error(request: Request, exc: JobStoreError):
        logger.error(f"Job store error: {exc}")
        return _error(500, exc)


def create_app(service: Optional[StagingService] = None) -> FastAPI:
    """Build the app. Without an injected service one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting Roomstage Staging Service on port {settings.compute_port}")
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service(settings)
        logger.info(f"Providers: {', '.join(app.state.service.registry.ids())}")
        yield
        logger.info("Shutting down Roomstage Staging Service")

    app = FastAPI(
        title="Roomstage Staging Service",
        description="AI virtual staging of room photos with provider routing and fallback",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app
