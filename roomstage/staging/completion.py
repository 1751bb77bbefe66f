"""Completion detection for async provider jobs.

A provider webhook and a client poll may both observe the same terminal
provider status. Both go through apply_provider_status(), whose store write
is conditional on the job still being non-terminal, so whichever channel
arrives second changes nothing.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from roomstage.jobs.models import JobStatus, StagingJob, utcnow
from roomstage.jobs.store import JobStore
from roomstage.notifications.notifier import Notifier
from roomstage.providers.base import PredictionState, ProviderJobStatus
from roomstage.providers.registry import ProviderRegistry
from roomstage.staging.errors import UnknownProviderError
from roomstage.staging.notify import notify_terminal
from roomstage.storage.base import ImageStorage

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    job_id: Optional[str]
    applied: bool
    status: Optional[str] = None
    ignored_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "applied": self.applied,
            "status": self.status,
            "ignored_reason": self.ignored_reason,
        }


class CompletionDetector:
    def __init__(
        self,
        store: JobStore,
        registry: ProviderRegistry,
        storage: ImageStorage,
        notifier: Notifier,
        poll_interval_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._registry = registry
        self._storage = storage
        self._notifier = notifier
        self._poll_interval = poll_interval_seconds
        self._clock = clock
        self._last_polled: Dict[str, float] = {}

    @property
    def poll_interval_seconds(self) -> float:
        return self._poll_interval

    async def apply_provider_status(
        self, job: StagingJob, status: ProviderJobStatus
    ) -> Tuple[StagingJob, bool]:
        """Apply a terminal provider status to a job at most once.

        Returns (job as stored, whether this call made the terminal write).
        """
        current = self._store.get(job.id) or job
        if current.is_terminal:
            self._last_polled.pop(current.id, None)
            return current, False
        if not status.state.is_terminal:
            return current, False

        elapsed_ms = _elapsed_ms(current.created_at, status.predict_time_seconds)

        if status.state == PredictionState.SUCCEEDED and status.output_url:
            self._store.transition(current.id, JobStatus.UPLOADING)
            upload = await self._storage.download_and_reupload(
                status.output_url, current.user_id, current.id
            )
            if upload.success:
                finished = self._store.transition(
                    current.id,
                    JobStatus.COMPLETED,
                    staged_image_url=upload.url,
                    completed_at=utcnow(),
                    processing_time_ms=elapsed_ms,
                )
            else:
                finished = self._store.transition(
                    current.id,
                    JobStatus.FAILED,
                    error_message=f"Failed to store staged image: {upload.error}",
                    completed_at=utcnow(),
                    processing_time_ms=elapsed_ms,
                )
        else:
            if status.state == PredictionState.SUCCEEDED:
                error = "Provider returned no output"
            else:
                error = status.error or f"Prediction {status.state.value}"
            finished = self._store.transition(
                current.id,
                JobStatus.FAILED,
                error_message=error,
                completed_at=utcnow(),
                processing_time_ms=elapsed_ms,
            )

        self._last_polled.pop(current.id, None)
        if finished is None:
            logger.info(f"Job {current.id} already terminal; result for {status.handle} ignored")
            return self._store.get(current.id) or current, False

        logger.info(f"Job {current.id} -> {finished.status.value} (handle {status.handle})")
        await notify_terminal(self._notifier, finished)
        return finished, True

    async def handle_webhook(
        self, provider_name: str, payload: Mapping[str, Any]
    ) -> WebhookOutcome:
        """Raises UnknownProviderError, or ValueError for an unparseable payload."""
        provider = self._registry.get(provider_name)
        if provider is None:
            raise UnknownProviderError(f"Unknown provider: {provider_name}")

        status = provider.parse_webhook(payload)
        logger.info(f"Webhook from {provider_name}: {status.handle} is {status.state.value}")

        job = self._store.get_by_provider_handle(status.handle)
        if job is None:
            logger.warning(f"Webhook for unknown handle {status.handle} ignored")
            return WebhookOutcome(job_id=None, applied=False, ignored_reason="unknown handle")
        if job.provider != provider_name:
            logger.warning(f"Webhook from {provider_name} for job {job.id} on {job.provider} ignored")
            return WebhookOutcome(job_id=job.id, applied=False, status=job.status.value,
                                  ignored_reason="provider mismatch")

        job, applied = await self.apply_provider_status(job, status)
        return WebhookOutcome(job_id=job.id, applied=applied, status=job.status.value)

    async def poll(self, job: StagingJob) -> StagingJob:
        """Re-check an in-flight async job with its provider, throttled per job."""
        if job.is_terminal:
            self._last_polled.pop(job.id, None)
            return job
        if not job.provider_job_handle or not job.provider:
            return job
        provider = self._registry.get(job.provider)
        if provider is None or not provider.capabilities.supports_async:
            return job

        now = self._clock()
        last = self._last_polled.get(job.id)
        if last is not None and now - last < self._poll_interval:
            return job
        self._prune_poll_times(now)
        self._last_polled[job.id] = now

        status = await provider.get_status(job.provider_job_handle)
        if status is None:
            logger.warning(f"Status query for job {job.id} ({job.provider_job_handle}) failed")
            return job

        job, _ = await self.apply_provider_status(job, status)
        return job

    @property
    def tracked_poll_count(self) -> int:
        return len(self._last_polled)

    def _prune_poll_times(self, now: float) -> None:
        # Entries past the interval no longer throttle anything
        stale = [job_id for job_id, last in self._last_polled.items() if now - last >= self._poll_interval]
        for job_id in stale:
            del self._last_polled[job_id]


def _elapsed_ms(created_at: datetime, predict_time_seconds: Optional[float]) -> int:
    if predict_time_seconds is not None:
        return int(predict_time_seconds * 1000)
    return max(0, int((utcnow() - created_at).total_seconds() * 1000))
