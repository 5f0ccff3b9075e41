"""Test the cache-first analytics service."""
from __future__ import annotations

import pytest
import pytest_asyncio

from insightflow import cache as keys
from insightflow.cache import DEFAULT_TTL, OfflineCache
from insightflow.date_range import LAST_7_DAYS, TODAY
from insightflow.errors import AuthError, NetworkError, UnsupportedMetric
from insightflow.models import AccountCredentials, AnalyticsMetricItem, MetricKind, ProviderType, SeriesKind
from insightflow.registry import AccountRegistry, AnalyticsAccount
from insightflow.service import AnalyticsService

from conftest import Clock, make_stats


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(tmp_path, clock):
    return OfflineCache(tmp_path / "AnalyticsCache", clock=clock)


@pytest.fixture
def registry(tmp_path, secrets, provider_factory):
    return AccountRegistry(tmp_path / "accounts.json", secrets, transport=None, provider_factory=provider_factory)


@pytest.fixture
def service(registry, cache):
    return AnalyticsService(registry, cache)


@pytest_asyncio.fixture
async def provider(registry, fake_providers):
    await registry.add_account(
        AnalyticsAccount(
            id="acct",
            name="Work",
            server_url="https://umami.example.com",
            provider_type=ProviderType.UMAMI,
            credentials=AccountCredentials(token="tok"),
        )
    )
    return fake_providers[-1]


def stats_calls(provider):
    return [call for call in provider.calls if call[0] == "get_stats"]


class TestCacheFirst:

    @pytest.mark.asyncio
    async def test_fetch_then_serve_fresh_entry(self, service, provider):
        first = await service.stats("acct", "site-1", TODAY)
        second = await service.stats("acct", "site-1", TODAY)
        assert not first.from_cache
        assert second.from_cache and not second.is_stale
        assert second.value == first.value == make_stats()
        assert len(stats_calls(provider)) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, service, provider, clock):
        await service.stats("acct", "site-1", TODAY)
        clock.advance(DEFAULT_TTL + 1)
        again = await service.stats("acct", "site-1", TODAY)
        assert not again.from_cache
        assert len(stats_calls(provider)) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_skips_fresh_entry(self, service, provider):
        await service.stats("acct", "site-1", TODAY)
        await service.stats("acct", "site-1", TODAY, force_refresh=True)
        assert len(stats_calls(provider)) == 2

    @pytest.mark.asyncio
    async def test_network_failure_serves_stale_entry(self, service, provider, clock):
        await service.stats("acct", "site-1", TODAY)
        clock.advance(DEFAULT_TTL + 1)
        provider.failing_sites.add("site-1")
        stale = await service.stats("acct", "site-1", TODAY)
        assert stale.is_stale and stale.from_cache
        assert stale.value == make_stats()
        assert stale.cached_at is not None

    @pytest.mark.asyncio
    async def test_network_failure_without_cache_raises(self, service, provider):
        provider.failing_sites.add("site-1")
        with pytest.raises(NetworkError):
            await service.stats("acct", "site-1", TODAY)

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_masked_by_stale_data(self, service, provider, clock, monkeypatch):
        await service.stats("acct", "site-1", TODAY)
        clock.advance(DEFAULT_TTL + 1)

        async def expired(website_id, date_range):
            raise AuthError("token expired")

        monkeypatch.setattr(provider, "get_stats", expired)
        with pytest.raises(AuthError):
            await service.stats("acct", "site-1", TODAY)

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_replaced(self, service, provider, cache):
        cache.save(keys.stats_key("acct", "site-1", TODAY.id), {"unexpected": True})
        loaded = await service.stats("acct", "site-1", TODAY)
        assert not loaded.from_cache
        assert loaded.value == make_stats()


class TestKeys:

    @pytest.mark.asyncio
    async def test_sparkline_kinds_are_cached_separately(self, service, provider, cache):
        await service.sparkline("acct", "site-1", TODAY)
        await service.sparkline("acct", "site-1", TODAY, SeriesKind.VISITORS)
        base = keys.sparkline_key("acct", "site-1", TODAY.id)
        assert cache.load(base) is not None
        assert cache.load(f"{base}_visitors") is not None

    @pytest.mark.asyncio
    async def test_metric_limit_is_part_of_the_key(self, service, provider, cache):
        provider.breakdowns[MetricKind.PATH] = [AnalyticsMetricItem("/", 5)]
        await service.metrics("acct", "site-1", LAST_7_DAYS, MetricKind.PATH, limit=100)
        assert cache.load(keys.metrics_key("acct", "site-1", "7d", "path-100")) is not None

    @pytest.mark.asyncio
    async def test_unsupported_metric_is_not_cached(self, service, provider, cache):
        with pytest.raises(UnsupportedMetric):
            await service.metrics("acct", "site-1", LAST_7_DAYS, MetricKind.TITLE)
        assert cache.load(keys.metrics_key("acct", "site-1", "7d", "title-10")) is None

    @pytest.mark.asyncio
    async def test_websites_round_trip_through_cache(self, service, provider):
        await service.websites("acct")
        cached = await service.websites("acct")
        assert cached.from_cache
        assert [w.name for w in cached.value] == ["Blog", "Shop"]


class TestWarm:

    @pytest.mark.asyncio
    async def test_refreshes_every_site(self, service, provider):
        assert await service.warm("acct", TODAY) == 2
        assert {call[1] for call in stats_calls(provider)} == {"site-1", "site-2"}

    @pytest.mark.asyncio
    async def test_failing_site_is_skipped(self, service, provider):
        provider.failing_sites.add("site-2")
        assert await service.warm("acct", TODAY) == 1

    @pytest.mark.asyncio
    async def test_website_list_failure(self, service, provider):
        provider.fail_websites = True
        assert await service.warm("acct", TODAY) == 0
