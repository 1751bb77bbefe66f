"""Staging processor: drives one StagingJob through its status transitions.

Sync providers:   pending -> processing -> uploading -> completed | failed
Declutter first:  pending -> preprocessing -> processing -> uploading -> completed | failed
Async providers:  pending -> processing (handle stored; CompletionDetector finishes it)
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from roomstage.jobs.models import JobStatus, StagingJob, utcnow
from roomstage.jobs.store import JobStore, JobStoreError
from roomstage.notifications.notifier import Notifier
from roomstage.providers.base import (
    AsyncStagingResult,
    StagingInput,
    StagingProvider,
    SyncStagingResult,
)
from roomstage.providers.router import ProviderRouter
from roomstage.staging.notify import notify_terminal
from roomstage.storage.base import ImageStorage

logger = logging.getLogger(__name__)

WEBHOOK_ROUTE = "/api/v1/webhooks"


@dataclass
class ImagePayload:
    """Source image (and optional mask) for one or more jobs."""
    data: bytes
    mime_type: str
    mask: Optional[bytes] = None


class StagingProcessor:
    """Creates StagingJob records and runs them against a selected provider.

    Every failure path ends in a failed job with an error message; nothing
    raised by a provider or storage call escapes into the caller.
    """

    def __init__(
        self,
        store: JobStore,
        router: ProviderRouter,
        storage: ImageStorage,
        notifier: Notifier,
        public_base_url: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._router = router
        self._storage = storage
        self._notifier = notifier
        self._public_base_url = public_base_url.rstrip("/")
        self._clock = clock

    def create_job(
        self,
        user_id: str,
        room_type: str,
        furniture_style: str,
        provider: StagingProvider,
        original_image_url: Optional[str] = None,
        property_id: Optional[str] = None,
        version_group_id: Optional[str] = None,
        parent_job_id: Optional[str] = None,
    ) -> StagingJob:
        job = StagingJob(
            user_id=user_id,
            property_id=property_id,
            room_type=room_type,
            furniture_style=furniture_style,
            original_image_url=original_image_url,
            provider=provider.provider_id.value,
            version_group_id=version_group_id,
            parent_job_id=parent_job_id,
        )
        created = self._store.create(job)
        logger.info(f"Created job {created.id} ({room_type}/{furniture_style}) on {created.provider}")
        return created

    def callback_url(self, provider: StagingProvider) -> str:
        return f"{self._public_base_url}{WEBHOOK_ROUTE}/{provider.provider_id.value}"

    async def process(
        self,
        job: StagingJob,
        provider: StagingProvider,
        image: ImagePayload,
        declutter_first: bool = False,
    ) -> StagingJob:
        """Run a pending job. Returns the job as stored after this call."""
        started = self._clock()
        try:
            return await self._process(job, provider, image, declutter_first, started)
        except JobStoreError as exc:
            logger.exception(f"Saving state of job {job.id} failed")
            return await self.fail(job, f"Failed to save job state: {exc}", started)
        except Exception as exc:
            logger.exception(f"Processing job {job.id} raised")
            return await self.fail(job, f"Staging failed: {str(exc) or type(exc).__name__}", started)

    async def _process(
        self,
        job: StagingJob,
        provider: StagingProvider,
        image: ImagePayload,
        declutter_first: bool,
        started: float,
    ) -> StagingJob:
        staging_input = StagingInput(
            image_bytes=image.data,
            mime_type=image.mime_type,
            room_type=job.room_type,
            furniture_style=job.furniture_style,
            job_id=job.id,
            image_url=job.original_image_url,
            mask_bytes=image.mask,
        )
        caps = provider.capabilities

        if caps.supports_sync:
            return await self._run_sync(job, provider, staging_input, declutter_first, started)
        if caps.supports_async:
            if declutter_first:
                logger.info(f"{provider.display_name} cannot declutter; staging job {job.id} directly")
            return await self._start_async(job, provider, staging_input, started)
        return await self.fail(job, f"{provider.display_name} supports no staging mode", started)

    async def _run_sync(
        self,
        job: StagingJob,
        provider: StagingProvider,
        staging_input: StagingInput,
        declutter_first: bool,
        started: float,
    ) -> StagingJob:
        if declutter_first and provider.capabilities.supports_declutter:
            self._advance(job, JobStatus.PREPROCESSING)
            decluttered = await self._call(provider.remove_objects, staging_input)
            if not decluttered.success or not decluttered.image_bytes:
                return await self._provider_failure(
                    job, provider, decluttered, started, prefix="Declutter failed"
                )
            staging_input = replace(
                staging_input,
                image_bytes=decluttered.image_bytes,
                mime_type=decluttered.mime_type or staging_input.mime_type,
                image_url=decluttered.source_url or staging_input.image_url,
            )
        elif declutter_first:
            logger.info(f"{provider.display_name} cannot declutter; staging job {job.id} directly")

        self._advance(job, JobStatus.PROCESSING)
        result = await self._call(provider.stage_sync, staging_input)
        if not result.success:
            return await self._provider_failure(job, provider, result, started)
        if not result.image_bytes:
            return await self.fail(job, "Provider returned no image", started)

        self._advance(job, JobStatus.UPLOADING)
        upload = await self._storage.upload(
            result.image_bytes, result.mime_type or "image/png", job.user_id, job.id
        )
        if not upload.success:
            return await self.fail(job, f"Failed to store staged image: {upload.error}", started)

        finished = self._store.transition(
            job.id,
            JobStatus.COMPLETED,
            staged_image_url=upload.url,
            completed_at=utcnow(),
            processing_time_ms=self._elapsed_ms(started),
        )
        return await self._finish(job, finished)

    async def _start_async(
        self,
        job: StagingJob,
        provider: StagingProvider,
        staging_input: StagingInput,
        started: float,
    ) -> StagingJob:
        self._advance(job, JobStatus.PROCESSING)
        try:
            result = await provider.stage_async(staging_input, self.callback_url(provider))
        except Exception as exc:
            logger.exception(f"{provider.display_name} raised while starting job {job.id}")
            result = AsyncStagingResult(success=False, error=str(exc) or type(exc).__name__)

        if not result.success or not result.provider_job_handle:
            if result.rate_limited:
                self._router.invalidate_health(provider.provider_id.value)
            return await self.fail(job, result.error or "Provider did not start the job", started)

        updated = self._store.update_fields(job.id, {"provider_job_handle": result.provider_job_handle})
        logger.info(f"Job {job.id} submitted to {provider.display_name} as {result.provider_job_handle}")
        return updated or self._store.get(job.id)

    async def fail(self, job: StagingJob, error: str, started: Optional[float] = None) -> StagingJob:
        """Record a terminal failure and notify.

        If the store cannot take the write, the failed job is returned
        unsaved so the caller still sees the outcome.
        """
        fields = {"error_message": error, "completed_at": utcnow()}
        if started is not None:
            fields["processing_time_ms"] = self._elapsed_ms(started)
        logger.error(f"Job {job.id} failed: {error}")
        try:
            finished = self._store.transition(job.id, JobStatus.FAILED, **fields)
        except JobStoreError as exc:
            logger.error(f"Could not record failure of job {job.id}: {exc}")
            return job.model_copy(
                update={**fields, "status": JobStatus.FAILED, "staged_image_url": None}
            )
        return await self._finish(job, finished)

    async def _provider_failure(
        self,
        job: StagingJob,
        provider: StagingProvider,
        result: SyncStagingResult,
        started: float,
        prefix: Optional[str] = None,
    ) -> StagingJob:
        if result.rate_limited:
            self._router.invalidate_health(provider.provider_id.value)
        error = result.error or "Provider returned no image"
        if prefix:
            error = f"{prefix}: {error}"
        return await self.fail(job, error, started)

    async def _call(
        self,
        method: Callable[[StagingInput], Awaitable[SyncStagingResult]],
        staging_input: StagingInput,
    ) -> SyncStagingResult:
        try:
            return await method(staging_input)
        except Exception as exc:
            logger.exception(f"Provider call for job {staging_input.job_id} raised")
            return SyncStagingResult.failure(str(exc) or type(exc).__name__)

    async def _finish(self, job: StagingJob, finished: Optional[StagingJob]) -> StagingJob:
        if finished is None:
            # Another writer already made the job terminal
            try:
                return self._store.get(job.id) or job
            except JobStoreError as exc:
                logger.error(f"Could not re-read job {job.id}: {exc}")
                return job
        logger.info(f"Job {job.id} -> {finished.status.value}")
        await notify_terminal(self._notifier, finished)
        return finished

    def _advance(self, job: StagingJob, status: JobStatus) -> None:
        if self._store.transition(job.id, status) is None:
            logger.warning(f"Job {job.id} could not move to {status.value}")

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)
