"""Provider routing with a TTL health cache and one level of fallback."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from roomstage.providers.base import ProviderHealth, StagingProvider
from roomstage.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingConfig:
    default_provider: str
    enable_fallback: bool
    fallback_provider: str


@dataclass
class ProviderSelection:
    provider: StagingProvider
    fallback_used: bool
    health: ProviderHealth


class RoutingError(Exception):
    """No usable provider: neither the target nor the configured fallback."""

    def __init__(
        self,
        target: str,
        target_reason: str,
        fallback: Optional[str] = None,
        fallback_reason: Optional[str] = None,
    ):
        self.target = target
        self.target_reason = target_reason
        self.fallback = fallback
        self.fallback_reason = fallback_reason
        if fallback is None:
            fallback_text = "disabled"
        else:
            fallback_text = f"{fallback} ({fallback_reason})"
        super().__init__(
            f"No staging provider available. Primary: {target} ({target_reason}), "
            f"Fallback: {fallback_text}"
        )


class HealthCache:
    """Per-provider health entries with a fixed TTL.

    Entries are (health, cached_at) tuples replaced wholesale. Concurrent
    misses may probe the same provider more than once; no locking.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[ProviderHealth, float]] = {}

    def get(self, provider_id: str) -> Optional[ProviderHealth]:
        entry = self._entries.get(provider_id)
        if entry is None:
            return None
        health, cached_at = entry
        if self._clock() - cached_at >= self._ttl:
            return None
        return health

    def put(self, provider_id: str, health: ProviderHealth) -> None:
        self._entries[provider_id] = (health, self._clock())

    def invalidate(self, provider_id: Optional[str] = None) -> None:
        if provider_id is None:
            self._entries = {}
        else:
            self._entries.pop(provider_id, None)


class ProviderRouter:
    """Selects the provider for a request.

    1. Target is the caller's preference, else the configured default.
    2. Use it if its (cached or fresh) health is available and not rate limited.
    3. Otherwise try the configured fallback once, if enabled.
    4. Otherwise raise RoutingError naming both reasons.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: RoutingConfig,
        health_cache: Optional[HealthCache] = None,
    ):
        self._registry = registry
        self._config = config
        self._cache = health_cache or HealthCache()

    @property
    def config(self) -> RoutingConfig:
        return self._config

    async def select_provider(self, preferred_provider: Optional[str] = None) -> ProviderSelection:
        target = preferred_provider or self._config.default_provider

        target_health = await self._get_health_cached(target)
        if target_health.usable:
            return ProviderSelection(self._registry.get(target), False, target_health)

        target_reason = _reason(target_health)
        if not self._config.enable_fallback:
            raise RoutingError(target, target_reason)

        fallback = self._config.fallback_provider
        if fallback == target:
            raise RoutingError(target, target_reason, fallback, target_reason)

        fallback_health = await self._get_health_cached(fallback)
        if fallback_health.usable:
            logger.info(f"Primary provider {target} unavailable ({target_reason}), using fallback {fallback}")
            return ProviderSelection(self._registry.get(fallback), True, fallback_health)

        raise RoutingError(target, target_reason, fallback, _reason(fallback_health))

    async def get_all_providers_health(self) -> List[ProviderHealth]:
        return [await self._get_health_cached(provider_id) for provider_id in self._registry.ids()]

    async def _get_health_cached(self, provider_id: str) -> ProviderHealth:
        cached = self._cache.get(provider_id)
        if cached is not None:
            return cached

        provider = self._registry.get(provider_id)
        if provider is None:
            return ProviderHealth(provider=provider_id, available=False, error_message="unknown provider")

        health = await provider.check_health()
        self._cache.put(provider_id, health)
        if not health.usable:
            logger.warning(f"Provider {provider_id} unhealthy: {_reason(health)}")
        return health

    def invalidate_health(self, provider_id: str) -> None:
        """Force the next lookup of one provider to re-probe (e.g. after a 429)."""
        self._cache.invalidate(provider_id)

    def clear_health_cache(self) -> None:
        self._cache.invalidate()


def _reason(health: ProviderHealth) -> str:
    if health.rate_limited:
        return health.error_message or "rate limited"
    return health.error_message or "unavailable"
