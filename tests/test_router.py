"""Tests for provider routing and the health cache."""

import pytest

from roomstage.providers.base import ProviderId
from roomstage.providers.registry import ProviderRegistry
from roomstage.providers.router import HealthCache, ProviderRouter, RoutingConfig, RoutingError

from fakes import async_provider, sync_provider


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_router(providers, default="gemini", fallback="stable-diffusion", enable_fallback=True, clock=None):
    cache = HealthCache(ttl_seconds=60.0, clock=clock or Clock())
    config = RoutingConfig(default_provider=default, enable_fallback=enable_fallback, fallback_provider=fallback)
    return ProviderRouter(ProviderRegistry(providers), config, cache)


@pytest.mark.asyncio
async def test_healthy_default_is_selected():
    gemini = sync_provider()
    router = make_router([gemini, async_provider()])

    selection = await router.select_provider()

    assert selection.provider is gemini
    assert selection.fallback_used is False


@pytest.mark.asyncio
async def test_unavailable_target_uses_fallback():
    replicate = async_provider()
    router = make_router([sync_provider(available=False), replicate])

    selection = await router.select_provider()

    assert selection.provider is replicate
    assert selection.fallback_used is True


@pytest.mark.asyncio
async def test_rate_limited_target_uses_fallback():
    replicate = async_provider()
    router = make_router([sync_provider(rate_limited=True), replicate])

    selection = await router.select_provider()

    assert selection.provider is replicate
    assert selection.fallback_used is True


@pytest.mark.asyncio
async def test_both_unavailable_names_both_reasons():
    router = make_router([sync_provider(available=False), async_provider(rate_limited=True)])

    with pytest.raises(RoutingError) as exc_info:
        await router.select_provider()

    message = str(exc_info.value)
    assert "Primary: gemini (down for test)" in message
    assert "Fallback: stable-diffusion (down for test)" in message
    assert exc_info.value.fallback == "stable-diffusion"


@pytest.mark.asyncio
async def test_fallback_disabled_raises_without_probing_fallback():
    replicate = async_provider()
    router = make_router([sync_provider(available=False), replicate], enable_fallback=False)

    with pytest.raises(RoutingError) as exc_info:
        await router.select_provider()

    assert "Fallback: disabled" in str(exc_info.value)
    assert replicate.health_calls == 0


@pytest.mark.asyncio
async def test_preferred_provider_overrides_default():
    replicate = async_provider()
    router = make_router([sync_provider(), replicate], fallback="gemini")

    selection = await router.select_provider("stable-diffusion")

    assert selection.provider is replicate
    assert selection.fallback_used is False


@pytest.mark.asyncio
async def test_unknown_preferred_provider_falls_back():
    gemini = sync_provider()
    router = make_router([gemini], fallback="gemini")

    selection = await router.select_provider("no-such-provider")

    assert selection.provider is gemini
    assert selection.fallback_used is True


@pytest.mark.asyncio
async def test_fallback_equal_to_target_is_not_probed_twice():
    gemini = sync_provider(available=False)
    router = make_router([gemini], fallback="gemini")

    with pytest.raises(RoutingError):
        await router.select_provider()

    assert gemini.health_calls == 1


@pytest.mark.asyncio
async def test_health_is_cached_within_ttl():
    clock = Clock()
    gemini = sync_provider()
    router = make_router([gemini, async_provider()], clock=clock)

    await router.select_provider()
    clock.now += 59
    await router.select_provider()
    assert gemini.health_calls == 1

    clock.now += 2
    await router.select_provider()
    assert gemini.health_calls == 2


@pytest.mark.asyncio
async def test_invalidate_health_forces_reprobe():
    gemini = sync_provider()
    router = make_router([gemini, async_provider()])

    await router.select_provider()
    router.invalidate_health("gemini")
    await router.select_provider()

    assert gemini.health_calls == 2


@pytest.mark.asyncio
async def test_all_providers_health():
    gemini = sync_provider()
    replicate = async_provider(available=False)
    router = make_router([gemini, replicate])

    health = await router.get_all_providers_health()

    assert [h.provider for h in health] == [ProviderId.GEMINI.value, ProviderId.STABLE_DIFFUSION.value]
    assert [h.available for h in health] == [True, False]

    router.clear_health_cache()
    await router.get_all_providers_health()
    assert gemini.health_calls == 2
