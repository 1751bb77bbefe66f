"""Request-scoped access to the process-wide StagingService."""

from fastapi import HTTPException, Request

from roomstage.staging.service import StagingService


def get_service(request: Request) -> StagingService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Staging service not initialized")
    return service
