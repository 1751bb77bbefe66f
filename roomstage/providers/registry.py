"""Provider registry: the set of provider instances a service routes between."""

import logging
from typing import Dict, Iterable, List, Optional

from roomstage.config import Settings
from roomstage.providers.base import StagingProvider
from roomstage.providers.decor8_provider import Decor8Provider
from roomstage.providers.gemini_provider import GeminiProvider
from roomstage.providers.replicate_provider import ReplicateProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Holds one instance per provider id.

    Built once at service start and handed to the router and the
    completion detector; there is no module-level registry.
    """

    def __init__(self, providers: Optional[Iterable[StagingProvider]] = None):
        self._providers: Dict[str, StagingProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: StagingProvider) -> None:
        provider_id = provider.provider_id.value
        self._providers[provider_id] = provider
        caps = provider.capabilities
        logger.info(
            f"Registered provider: {provider_id} ({provider.display_name}) "
            f"sync={caps.supports_sync} async={caps.supports_async} declutter={caps.supports_declutter}"
        )

    def get(self, provider_id: str) -> Optional[StagingProvider]:
        return self._providers.get(provider_id)

    def ids(self) -> List[str]:
        return list(self._providers.keys())

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def build_providers(settings: Settings) -> ProviderRegistry:
    """Construct the production providers from settings."""
    return ProviderRegistry([
        GeminiProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.provider_timeout_seconds,
        ),
        ReplicateProvider(
            api_token=settings.replicate_api_token,
            model_version=settings.replicate_model_version,
            webhook_secret=settings.replicate_webhook_secret,
            health_timeout_seconds=settings.health_probe_timeout_seconds,
        ),
        Decor8Provider(
            api_key=settings.decor8_api_key,
            base_url=settings.decor8_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            health_timeout_seconds=settings.health_probe_timeout_seconds,
        ),
    ])
