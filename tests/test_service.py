"""Tests for the staging service facade: submission, status views, webhooks."""

import json

import pytest

from roomstage.config import Settings
from roomstage.jobs.models import JobStatus
from roomstage.jobs.store import JobStoreError
from roomstage.providers.base import ProviderCapabilities, ProviderId, SyncStagingResult
from roomstage.providers.registry import ProviderRegistry
from roomstage.providers.router import RoutingError
from roomstage.staging.errors import JobNotFoundError, StagingRequestError, UnknownProviderError, WebhookAuthError
from roomstage.staging.factory import build_service

from fakes import FakeProvider, RecordingJobStore, async_provider, sync_provider


async def submit(service, png_bytes, styles=("modern", "scandinavian"), **kwargs):
    return await service.submit_staging(
        user_id="user-1",
        image=png_bytes,
        mime_type="image/png",
        room_type="living-room",
        styles=list(styles),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_fan_out_creates_one_job_per_style(service, png_bytes, store, storage):
    result = await submit(service, png_bytes)

    assert result.provider == "gemini"
    assert result.fallback_used is False
    assert [h.furniture_style for h in result.jobs] == ["modern", "scandinavian"]
    assert len(store.history) == 2
    for handle in result.jobs:
        job = store.get(handle.job_id)
        assert store.history[job.id][:2] == [JobStatus.PENDING, JobStatus.PROCESSING]
        assert job.status == JobStatus.COMPLETED
        assert job.original_image_url == result.original_image_url
    originals = [u for u in storage.uploads if u[2] == "original"]
    assert len(originals) == 1


@pytest.mark.asyncio
async def test_each_style_resolves_independently(make_service, png_bytes, store):
    class PickyProvider(FakeProvider):
        async def stage_sync(self, staging_input):
            if staging_input.furniture_style == "industrial":
                return SyncStagingResult.failure("style refused")
            return await super().stage_sync(staging_input)

    picky = PickyProvider(ProviderId.GEMINI, ProviderCapabilities(supports_sync=True, supports_async=False))
    service = make_service([picky], enable_fallback=False)

    result = await submit(service, png_bytes, styles=("modern", "industrial"))

    statuses = {h.furniture_style: h.status for h in result.jobs}
    assert statuses == {"modern": "completed", "industrial": "failed"}


@pytest.mark.asyncio
async def test_fallback_is_reported(make_service, png_bytes):
    service = make_service([sync_provider(available=False), async_provider()])

    result = await submit(service, png_bytes, styles=("modern",))

    assert result.provider == "stable-diffusion"
    assert result.fallback_used is True
    assert result.jobs[0].is_async is True
    assert result.jobs[0].status == "processing"


@pytest.mark.asyncio
async def test_routing_failure_creates_no_jobs(make_service, png_bytes, store):
    service = make_service([sync_provider(available=False), async_provider(available=False)])

    with pytest.raises(RoutingError):
        await submit(service, png_bytes)

    assert store.history == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"room_type": "garage"},
        {"styles": []},
        {"styles": ["modern", "brutalist"]},
        {"styles": ["modern", "modern"]},
        {"mime_type": "image/gif"},
        {"image": b"not an image"},
        {"image": b""},
    ],
)
async def test_invalid_requests_are_rejected(service, png_bytes, store, kwargs):
    args = {
        "user_id": "user-1",
        "image": png_bytes,
        "mime_type": "image/png",
        "room_type": "living-room",
        "styles": ["modern"],
    }
    args.update(kwargs)

    with pytest.raises(StagingRequestError):
        await service.submit_staging(**args)

    assert store.history == {}


@pytest.mark.asyncio
async def test_oversize_image_is_rejected(make_service, png_bytes, gemini):
    service = make_service([gemini], max_image_bytes=10)

    with pytest.raises(StagingRequestError):
        await submit(service, png_bytes)


@pytest.mark.asyncio
async def test_original_upload_failure_does_not_block_staging(service, png_bytes, storage, store, gemini):
    storage.fail_uploads = True

    result = await submit(service, png_bytes, styles=("modern",))

    assert result.original_image_url is None
    assert len(gemini.sync_inputs) == 1
    job = store.get(result.jobs[0].job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message.startswith("Failed to store staged image")


@pytest.mark.asyncio
async def test_job_view_for_completed_job(service, png_bytes):
    result = await submit(service, png_bytes, styles=("modern",))

    view = await service.get_job_status(result.jobs[0].job_id, "user-1")

    assert view["status"] == "completed"
    assert view["progress"] == {
        "step": "completed",
        "step_number": 4,
        "total_steps": 4,
        "message": "Staging complete",
    }
    assert view["estimated_time_remaining"] is None
    assert view["poll_interval_seconds"] is None
    assert view["room_type_label"] == "Living Room"


@pytest.mark.asyncio
async def test_job_view_for_in_flight_job(make_service, png_bytes):
    service = make_service([async_provider()], default_provider="stable-diffusion", enable_fallback=False)
    result = await submit(service, png_bytes, styles=("modern",))

    view = await service.get_job_status(result.jobs[0].job_id, "user-1")

    assert view["status"] == "processing"
    assert view["progress"]["step_number"] == 2
    assert 0 <= view["estimated_time_remaining"] <= 30
    assert view["poll_interval_seconds"] == 2.0


@pytest.mark.asyncio
async def test_status_of_other_users_job_is_not_found(service, png_bytes):
    result = await submit(service, png_bytes, styles=("modern",))

    with pytest.raises(JobNotFoundError):
        await service.get_job_status(result.jobs[0].job_id, "user-2")
    with pytest.raises(JobNotFoundError):
        await service.get_job_status("missing", "user-1")


@pytest.mark.asyncio
async def test_webhook_round_trip_through_service(make_service, png_bytes, store):
    service = make_service([async_provider()], default_provider="stable-diffusion", enable_fallback=False)
    result = await submit(service, png_bytes, styles=("modern",))
    body = json.dumps({"id": "pred-123", "status": "succeeded", "output": "https://cdn/x.png"}).encode()

    outcome = await service.handle_provider_webhook("stable-diffusion", body, {})

    assert outcome.applied is True
    assert store.get(result.jobs[0].job_id).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(make_service, store):
    replicate = async_provider()
    replicate.signature_valid = False
    service = make_service([replicate])

    with pytest.raises(WebhookAuthError):
        await service.handle_provider_webhook("stable-diffusion", b"{}", {})


@pytest.mark.asyncio
async def test_webhook_with_malformed_body_is_rejected(service):
    with pytest.raises(StagingRequestError):
        await service.handle_provider_webhook("stable-diffusion", b"not json", {})
    with pytest.raises(StagingRequestError):
        await service.handle_provider_webhook("stable-diffusion", b"[1, 2]", {})
    with pytest.raises(StagingRequestError):
        await service.handle_provider_webhook("stable-diffusion", b'{"status": "succeeded"}', {})


@pytest.mark.asyncio
async def test_webhook_for_unknown_provider(service):
    with pytest.raises(UnknownProviderError):
        await service.handle_provider_webhook("midjourney", b"{}", {})


@pytest.mark.asyncio
async def test_providers_health(service):
    health = await service.providers_health()

    assert {h["provider"] for h in health} == {"gemini", "stable-diffusion"}
    assert all(h["available"] for h in health)


class FirstCompletionFailsStore(RecordingJobStore):
    """Raises on the first completed write, like a dropped database connection."""

    def __init__(self):
        super().__init__()
        self.completion_failed = False

    def _conditional_transition(self, job_id, status, fields):
        if status == JobStatus.COMPLETED and not self.completion_failed:
            self.completion_failed = True
            raise JobStoreError("connection reset")
        return super()._conditional_transition(job_id, status, fields)


@pytest.mark.asyncio
async def test_store_error_on_one_job_does_not_sink_the_submission(png_bytes, gemini, storage, notifier):
    store = FirstCompletionFailsStore()
    service = build_service(
        Settings(public_base_url="http://test"),
        registry=ProviderRegistry([gemini]),
        store=store,
        storage=storage,
        notifier=notifier,
    )

    result = await submit(service, png_bytes)

    statuses = sorted(h.status for h in result.jobs)
    assert statuses == ["completed", "failed"]
    failed = next(h for h in result.jobs if h.status == "failed")
    assert failed.error_message == "Failed to save job state: connection reset"
    assert sorted(store.get(h.job_id).status.value for h in result.jobs) == ["completed", "failed"]
    assert store.history[failed.job_id][-2:] == [JobStatus.UPLOADING, JobStatus.FAILED]
