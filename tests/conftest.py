"""
Pytest configuration and fixtures for the staging service tests.
"""
import io

import pytest
from PIL import Image

from roomstage.config import Settings
from roomstage.providers.registry import ProviderRegistry
from roomstage.staging.factory import build_service

from fakes import FakeStorage, RecordingJobStore, RecordingNotifier, async_provider, sync_provider


@pytest.fixture
def png_bytes():
    """A small real PNG image."""
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 180, 160)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store():
    return RecordingJobStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gemini():
    return sync_provider()


@pytest.fixture
def replicate_fake():
    return async_provider()


@pytest.fixture
def make_service(store, storage, notifier):
    """Build a StagingService over fakes: make_service(providers, **settings)."""

    def _make(providers, **overrides):
        settings = Settings(public_base_url="http://test", **overrides)
        return build_service(
            settings,
            registry=ProviderRegistry(providers),
            store=store,
            storage=storage,
            notifier=notifier,
        )

    return _make


@pytest.fixture
def service(make_service, gemini, replicate_fake):
    return make_service([gemini, replicate_fake])
