"""In-process fakes for providers, storage and notifications."""

from typing import Any, Dict, List, Mapping, Optional

from roomstage.jobs.memory_store import InMemoryJobStore
from roomstage.jobs.models import JobStatus
from roomstage.notifications.notifier import Notifier
from roomstage.providers.base import (
    AsyncStagingResult,
    PredictionState,
    ProviderCapabilities,
    ProviderHealth,
    ProviderId,
    ProviderJobStatus,
    StagingInput,
    StagingProvider,
    SyncStagingResult,
)
from roomstage.storage.base import FetchedImage, ImageStorage, StorageError, UploadResult

STAGED_BYTES = b"staged-image-bytes"
DECLUTTERED_BYTES = b"decluttered-image-bytes"


class FakeProvider(StagingProvider):
    """Configurable provider; counts every call it receives."""

    def __init__(
        self,
        provider_id: ProviderId,
        capabilities: ProviderCapabilities,
        available: bool = True,
        rate_limited: bool = False,
    ):
        self.provider_id = provider_id
        self.display_name = f"Fake {provider_id.value}"
        self.capabilities = capabilities
        self.health = ProviderHealth(
            provider=provider_id.value,
            available=available,
            rate_limited=rate_limited,
            error_message=None if available and not rate_limited else "down for test",
        )
        self.health_calls = 0
        self.sync_result = SyncStagingResult(success=True, image_bytes=STAGED_BYTES, mime_type="image/png")
        self.declutter_result = SyncStagingResult(
            success=True,
            image_bytes=DECLUTTERED_BYTES,
            mime_type="image/png",
            source_url="https://provider.test/decluttered.png",
        )
        self.async_result = AsyncStagingResult(success=True, provider_job_handle="pred-123")
        self.status: Optional[ProviderJobStatus] = None
        self.raise_on_stage: Optional[Exception] = None
        self.signature_valid = True
        self.sync_inputs: List[StagingInput] = []
        self.declutter_inputs: List[StagingInput] = []
        self.async_calls: List[tuple] = []
        self.status_calls = 0

    async def check_health(self) -> ProviderHealth:
        self.health_calls += 1
        return self.health

    async def stage_sync(self, staging_input: StagingInput) -> SyncStagingResult:
        self.sync_inputs.append(staging_input)
        if self.raise_on_stage is not None:
            raise self.raise_on_stage
        return self.sync_result

    async def remove_objects(self, staging_input: StagingInput) -> SyncStagingResult:
        self.declutter_inputs.append(staging_input)
        return self.declutter_result

    async def stage_async(self, staging_input: StagingInput, callback_url: str) -> AsyncStagingResult:
        self.async_calls.append((staging_input, callback_url))
        return self.async_result

    async def get_status(self, provider_job_handle: str) -> Optional[ProviderJobStatus]:
        self.status_calls += 1
        return self.status

    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderJobStatus:
        if not payload.get("id"):
            raise ValueError("payload has no id")
        output = payload.get("output")
        return ProviderJobStatus(
            handle=payload["id"],
            state=PredictionState(payload.get("status", "processing")),
            output_urls=[output] if output else [],
            error=payload.get("error"),
        )

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        return self.signature_valid

    def build_prompt(self, room_type: str, furniture_style: str) -> str:
        return f"stage {room_type} in {furniture_style}"

    def estimated_processing_time_seconds(self) -> float:
        return 30.0 if self.capabilities.supports_async else 10.0


def sync_provider(provider_id: ProviderId = ProviderId.GEMINI, **kwargs) -> FakeProvider:
    return FakeProvider(provider_id, ProviderCapabilities(supports_sync=True, supports_async=False), **kwargs)


def async_provider(provider_id: ProviderId = ProviderId.STABLE_DIFFUSION, **kwargs) -> FakeProvider:
    return FakeProvider(provider_id, ProviderCapabilities(supports_sync=False, supports_async=True), **kwargs)


def declutter_provider(provider_id: ProviderId = ProviderId.DECOR8, **kwargs) -> FakeProvider:
    caps = ProviderCapabilities(supports_sync=True, supports_async=False, supports_declutter=True)
    return FakeProvider(provider_id, caps, **kwargs)


class FakeStorage(ImageStorage):
    """Keeps uploads in memory under https://storage.test/ URLs."""

    def __init__(self):
        super().__init__()
        self.files: Dict[str, bytes] = {}
        self.uploads: List[tuple] = []
        self.reuploads: List[str] = []
        self.fail_uploads = False
        self.fail_reuploads = False

    async def upload(self, data, mime_type, owner_id, job_id, suffix="staged") -> UploadResult:
        self.uploads.append((owner_id, job_id, suffix, mime_type))
        if self.fail_uploads:
            return UploadResult(success=False, error="bucket unavailable")
        url = f"https://storage.test/{owner_id}/{job_id}-{suffix}"
        self.files[url] = data
        return UploadResult(success=True, url=url)

    async def download_and_reupload(self, external_url, owner_id, job_id) -> UploadResult:
        self.reuploads.append(external_url)
        if self.fail_reuploads:
            return UploadResult(success=False, error="download failed")
        return await self.upload(b"mirrored:" + external_url.encode(), "image/png", owner_id, job_id)

    async def fetch(self, url: str) -> FetchedImage:
        if url not in self.files:
            raise StorageError(f"Failed to download {url}")
        return FetchedImage(data=self.files[url], mime_type="image/png")


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.completed: List[tuple] = []
        self.failed: List[tuple] = []
        self._fail = fail

    async def notify_complete(self, user_id, job_id, room_type):
        if self._fail:
            raise RuntimeError("notifications offline")
        self.completed.append((user_id, job_id, room_type))

    async def notify_failed(self, user_id, job_id, room_type, error):
        if self._fail:
            raise RuntimeError("notifications offline")
        self.failed.append((user_id, job_id, room_type, error))


class RecordingJobStore(InMemoryJobStore):
    """InMemoryJobStore that records every applied status change per job."""

    def __init__(self):
        super().__init__()
        self.history: Dict[str, List[JobStatus]] = {}

    def create(self, job):
        created = super().create(job)
        self.history[created.id] = [created.status]
        return created

    def _conditional_transition(self, job_id, status, fields):
        updated = super()._conditional_transition(job_id, status, fields)
        if updated is not None:
            self.history.setdefault(job_id, []).append(status)
        return updated
