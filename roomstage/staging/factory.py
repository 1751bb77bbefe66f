"""Build a StagingService from settings."""

import logging
from typing import Optional

from roomstage.config import Settings
from roomstage.db.supabase_client import get_supabase
from roomstage.jobs.memory_store import InMemoryJobStore
from roomstage.jobs.store import JobStore
from roomstage.jobs.supabase_store import SupabaseJobStore
from roomstage.notifications.notifier import LoggingNotifier, Notifier, SupabaseNotifier
from roomstage.providers.registry import ProviderRegistry, build_providers
from roomstage.providers.router import HealthCache, ProviderRouter, RoutingConfig
from roomstage.staging.completion import CompletionDetector
from roomstage.staging.processor import StagingProcessor
from roomstage.staging.service import StagingService
from roomstage.staging.versions import VersionManager
from roomstage.storage.base import ImageStorage
from roomstage.storage.local_storage import LocalImageStorage
from roomstage.storage.supabase_storage import SupabaseImageStorage

logger = logging.getLogger(__name__)


def build_service(
    settings: Settings,
    registry: Optional[ProviderRegistry] = None,
    store: Optional[JobStore] = None,
    storage: Optional[ImageStorage] = None,
    notifier: Optional[Notifier] = None,
) -> StagingService:
    """Construct every collaborator once; explicit arguments override settings."""
    supabase = None
    uses_supabase = "supabase" in (
        settings.job_store_backend,
        settings.image_storage_backend,
        settings.notifier_backend,
    )
    if uses_supabase and (store is None or storage is None or notifier is None):
        supabase = get_supabase(settings)

    if store is None:
        store = SupabaseJobStore(supabase) if settings.job_store_backend == "supabase" else InMemoryJobStore()
    if storage is None:
        if settings.image_storage_backend == "supabase":
            storage = SupabaseImageStorage(supabase, settings.storage_bucket)
        else:
            storage = LocalImageStorage(settings.local_storage_dir, settings.public_base_url)
    if notifier is None:
        notifier = SupabaseNotifier(supabase) if settings.notifier_backend == "supabase" else LoggingNotifier()
    if registry is None:
        registry = build_providers(settings)

    routing = RoutingConfig(
        default_provider=settings.default_provider,
        enable_fallback=settings.enable_fallback,
        fallback_provider=settings.resolved_fallback_provider(),
    )
    router = ProviderRouter(registry, routing, HealthCache(settings.health_cache_ttl_seconds))
    logger.info(
        f"Routing: default={routing.default_provider} fallback="
        f"{routing.fallback_provider if routing.enable_fallback else 'disabled'}"
    )

    return StagingService(
        store=store,
        registry=registry,
        router=router,
        storage=storage,
        processor=StagingProcessor(store, router, storage, notifier, settings.public_base_url),
        detector=CompletionDetector(store, registry, storage, notifier, settings.poll_interval_seconds),
        versions=VersionManager(store),
        max_image_bytes=settings.max_image_bytes,
    )
