"""Staging service: the operations exposed to the HTTP layer.

Wires the router, processor, completion detector and version manager
together. Constructed once per process (see staging/factory.py) and
passed to request handlers.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from roomstage.constants import ACCEPTED_IMAGE_TYPES, FURNITURE_STYLES, ROOM_TYPES
from roomstage.jobs.models import JobStatus, StagingJob
from roomstage.jobs.store import JobStore
from roomstage.providers.base import StagingProvider
from roomstage.providers.registry import ProviderRegistry
from roomstage.providers.router import ProviderRouter
from roomstage.staging.completion import CompletionDetector, WebhookOutcome
from roomstage.staging.errors import (
    JobNotFoundError,
    StagingRequestError,
    UnknownProviderError,
    WebhookAuthError,
)
from roomstage.staging.processor import ImagePayload, StagingProcessor
from roomstage.staging.versions import PromotionResult, VersionListing, VersionManager
from roomstage.staging.views import job_view
from roomstage.storage.base import ImageStorage, StorageError, detect_mime_type

logger = logging.getLogger(__name__)


@dataclass
class JobHandle:
    """What a submitter gets back for each job it started."""
    job_id: str
    furniture_style: str
    status: str
    provider: str
    is_async: bool
    estimated_seconds: float
    staged_image_url: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_job(cls, job: StagingJob, provider: StagingProvider) -> "JobHandle":
        return cls(
            job_id=job.id,
            furniture_style=job.furniture_style,
            status=job.status.value,
            provider=provider.provider_id.value,
            is_async=not job.is_terminal and job.provider_job_handle is not None,
            estimated_seconds=provider.estimated_processing_time_seconds(),
            staged_image_url=job.staged_image_url,
            error_message=job.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "furniture_style": self.furniture_style,
            "status": self.status,
            "provider": self.provider,
            "is_async": self.is_async,
            "estimated_seconds": self.estimated_seconds,
            "staged_image_url": self.staged_image_url,
            "error_message": self.error_message,
        }


@dataclass
class SubmissionResult:
    provider: str
    fallback_used: bool
    original_image_url: Optional[str]
    jobs: List[JobHandle] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "fallback_used": self.fallback_used,
            "original_image_url": self.original_image_url,
            "jobs": [job.to_dict() for job in self.jobs],
        }


class StagingService:
    def __init__(
        self,
        store: JobStore,
        registry: ProviderRegistry,
        router: ProviderRouter,
        storage: ImageStorage,
        processor: StagingProcessor,
        detector: CompletionDetector,
        versions: VersionManager,
        max_image_bytes: int = 10 * 1024 * 1024,
    ):
        self.store = store
        self.registry = registry
        self.router = router
        self.storage = storage
        self.processor = processor
        self.detector = detector
        self.versions = versions
        self._max_image_bytes = max_image_bytes

    async def submit_staging(
        self,
        user_id: str,
        image: bytes,
        mime_type: str,
        room_type: str,
        styles: List[str],
        property_id: Optional[str] = None,
        mask: Optional[bytes] = None,
        declutter_first: bool = False,
        preferred_provider: Optional[str] = None,
    ) -> SubmissionResult:
        """Fan out one job per style on a single routed provider.

        Raises StagingRequestError for invalid input and RoutingError when no
        provider is usable; in both cases no job is created.
        """
        self._validate_room_and_styles(room_type, styles)
        mime_type = self._validate_image(image, mime_type)

        selection = await self.router.select_provider(preferred_provider)
        provider = selection.provider

        upload = await self.storage.upload(image, mime_type, user_id, str(uuid.uuid4()), suffix="original")
        if not upload.success:
            logger.warning(f"Original image upload failed for user {user_id}: {upload.error}")
        original_url = upload.url if upload.success else None

        jobs = [
            self.processor.create_job(
                user_id=user_id,
                room_type=room_type,
                furniture_style=style,
                provider=provider,
                original_image_url=original_url,
                property_id=property_id,
            )
            for style in styles
        ]
        payload = ImagePayload(data=image, mime_type=mime_type, mask=mask)
        finished = await asyncio.gather(
            *(self.processor.process(job, provider, payload, declutter_first) for job in jobs)
        )

        return SubmissionResult(
            provider=provider.provider_id.value,
            fallback_used=selection.fallback_used,
            original_image_url=original_url,
            jobs=[JobHandle.from_job(job, provider) for job in finished],
        )

    async def get_job_status(self, job_id: str, user_id: str) -> Dict[str, Any]:
        job = self._owned_job(job_id, user_id)
        job = await self.detector.poll(job)
        provider = self.registry.get(job.provider) if job.provider else None
        estimate = provider.estimated_processing_time_seconds() if provider else None
        return job_view(job, estimate, self.detector.poll_interval_seconds)

    async def handle_provider_webhook(
        self, provider_name: str, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookOutcome:
        provider = self.registry.get(provider_name)
        if provider is None:
            raise UnknownProviderError(f"Unknown provider: {provider_name}")
        if not provider.verify_webhook(headers, raw_body):
            raise WebhookAuthError(f"Invalid webhook signature for {provider_name}")

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise StagingRequestError(f"Malformed webhook payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise StagingRequestError("Malformed webhook payload: expected an object")

        try:
            return await self.detector.handle_webhook(provider_name, payload)
        except UnknownProviderError:
            raise
        except ValueError as exc:
            raise StagingRequestError(str(exc)) from exc

    def set_primary_version(self, job_id: str, user_id: str) -> PromotionResult:
        return self.versions.set_primary_version(self._owned_job(job_id, user_id))

    def get_versions(self, job_id: str, user_id: str) -> VersionListing:
        return self.versions.get_versions(self._owned_job(job_id, user_id))

    async def remix(
        self,
        job_id: str,
        user_id: str,
        room_type: str,
        furniture_style: str,
        property_id: Optional[str] = None,
        preferred_provider: Optional[str] = None,
    ) -> JobHandle:
        """Stage the source job's original image again with a new room type/style."""
        source = self._owned_job(job_id, user_id)
        if source.status != JobStatus.COMPLETED:
            raise StagingRequestError("Only completed jobs can be remixed")
        if not source.original_image_url:
            raise StagingRequestError("Source job has no stored original image")
        self._validate_room_and_styles(room_type, [furniture_style])

        selection = await self.router.select_provider(preferred_provider)
        provider = selection.provider
        group_id = self.versions.ensure_group(source)

        job = self.processor.create_job(
            user_id=user_id,
            room_type=room_type,
            furniture_style=furniture_style,
            provider=provider,
            original_image_url=source.original_image_url,
            property_id=property_id or source.property_id,
            version_group_id=group_id,
            parent_job_id=source.id,
        )
        try:
            original = await self.storage.fetch(source.original_image_url)
        except StorageError as exc:
            job = await self.processor.fail(job, f"Failed to fetch original image: {exc}")
            return JobHandle.from_job(job, provider)

        job = await self.processor.process(
            job, provider, ImagePayload(data=original.data, mime_type=original.mime_type)
        )
        return JobHandle.from_job(job, provider)

    async def providers_health(self) -> List[Dict[str, Any]]:
        return [health.to_dict() for health in await self.router.get_all_providers_health()]

    def _owned_job(self, job_id: str, user_id: str) -> StagingJob:
        job = self.store.get(job_id)
        if job is None or job.user_id != user_id:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _validate_room_and_styles(room_type: str, styles: List[str]) -> None:
        if room_type not in ROOM_TYPES:
            raise StagingRequestError(f"Invalid room type: {room_type}")
        if not styles:
            raise StagingRequestError("At least one furniture style is required")
        for style in styles:
            if style not in FURNITURE_STYLES:
                raise StagingRequestError(f"Invalid furniture style: {style}")
        if len(set(styles)) != len(styles):
            raise StagingRequestError("Duplicate furniture styles")

    def _validate_image(self, image: bytes, mime_type: str) -> str:
        if not image:
            raise StagingRequestError("Image is empty")
        if len(image) > self._max_image_bytes:
            raise StagingRequestError(
                f"Image too large ({len(image)} bytes, max {self._max_image_bytes})"
            )
        if mime_type not in ACCEPTED_IMAGE_TYPES:
            raise StagingRequestError(f"Unsupported image type: {mime_type}")
        detected = detect_mime_type(image)
        if detected is None:
            raise StagingRequestError("Uploaded file is not a readable image")
        if detected not in ACCEPTED_IMAGE_TYPES:
            raise StagingRequestError(f"Unsupported image type: {detected}")
        return detected
