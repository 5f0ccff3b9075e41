"""
Cache-first loading of analytics data.

Every read goes through the offline cache: a fresh entry is served as is,
otherwise the account's adapter is asked and the answer stored. When the
vendor cannot be reached an existing stale entry is served instead and the
result is flagged ``is_stale`` so the caller can show it as such.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from insightflow import cache as keys
from insightflow.cache import OfflineCache
from insightflow.date_range import DateRange
from insightflow.errors import NetworkError, capture
from insightflow.models import (
    AnalyticsChartPoint,
    AnalyticsMetricItem,
    AnalyticsStats,
    AnalyticsWebsite,
    MetricKind,
    SeriesKind,
)
from insightflow.registry import AccountRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Loaded(Generic[T]):
    value: T
    cached_at: Optional[datetime] = None
    from_cache: bool = False
    is_stale: bool = False


class AnalyticsService:
    def __init__(self, registry: AccountRegistry, cache: OfflineCache) -> None:
        self.registry = registry
        self.cache = cache

    async def _load(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        force_refresh: bool = False,
    ) -> Loaded[T]:
        entry = self.cache.load(key)
        cached: Optional[T] = None
        if entry is not None:
            try:
                cached = decode(entry.data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping undecodable cache entry %s: %s", key, e)
                self.cache.delete(key)
                entry = None
        if entry is not None and not entry.is_expired and not force_refresh:
            return Loaded(cached, cached_at=entry.cached_at, from_cache=True)

        try:
            value = await fetch()
        except NetworkError as e:
            if entry is None:
                raise
            logger.warning("Serving stale %s after fetch failure: %s", key, e)
            return Loaded(cached, cached_at=entry.cached_at, from_cache=True, is_stale=True)

        self.cache.save(key, encode(value))
        return Loaded(value)

    async def websites(self, account_id: str, force_refresh: bool = False) -> Loaded[List[AnalyticsWebsite]]:
        provider = self.registry.provider_for(account_id)
        return await self._load(
            keys.websites_key(account_id),
            provider.get_websites,
            lambda sites: [w.to_dict() for w in sites],
            lambda data: [AnalyticsWebsite.from_dict(item) for item in data],
            force_refresh,
        )

    async def stats(
        self, account_id: str, website_id: str, date_range: DateRange, force_refresh: bool = False
    ) -> Loaded[AnalyticsStats]:
        provider = self.registry.provider_for(account_id)
        return await self._load(
            keys.stats_key(account_id, website_id, date_range.id),
            lambda: provider.get_stats(website_id, date_range),
            AnalyticsStats.to_dict,
            AnalyticsStats.from_dict,
            force_refresh,
        )

    async def sparkline(
        self,
        account_id: str,
        website_id: str,
        date_range: DateRange,
        kind: SeriesKind = SeriesKind.PAGEVIEWS,
        force_refresh: bool = False,
    ) -> Loaded[List[AnalyticsChartPoint]]:
        provider = self.registry.provider_for(account_id)
        key = keys.sparkline_key(account_id, website_id, date_range.id)
        if kind != SeriesKind.PAGEVIEWS:
            key = f"{key}_{kind.value}"
        return await self._load(
            key,
            lambda: provider.get_series(website_id, date_range, kind),
            lambda points: [p.to_dict() for p in points],
            lambda data: [AnalyticsChartPoint.from_dict(item) for item in data],
            force_refresh,
        )

    async def metrics(
        self,
        account_id: str,
        website_id: str,
        date_range: DateRange,
        kind: MetricKind,
        limit: int = 10,
        force_refresh: bool = False,
    ) -> Loaded[List[AnalyticsMetricItem]]:
        """Breakdown for one dimension. UnsupportedMetric propagates and nothing is cached."""
        provider = self.registry.provider_for(account_id)
        return await self._load(
            keys.metrics_key(account_id, website_id, date_range.id, f"{kind.value}-{limit}"),
            lambda: provider.get_metric_breakdown(website_id, date_range, kind, limit),
            lambda items: [i.to_dict() for i in items],
            lambda data: [AnalyticsMetricItem.from_dict(item) for item in data],
            force_refresh,
        )

    async def warm(self, account_id: str, date_range: DateRange) -> int:
        """
        Background refresh of the website list, stats and sparklines for one
        account. Failures are logged and skipped. Returns the number of
        websites whose stats were refreshed.
        """
        sites = await capture(self.websites(account_id, force_refresh=True))
        if not sites.ok:
            logger.warning("Cache warm for account %s failed: %s", account_id, sites.error)
            return 0

        async def refresh(website: AnalyticsWebsite) -> bool:
            stats, _ = await asyncio.gather(
                capture(self.stats(account_id, website.id, date_range, force_refresh=True)),
                capture(self.sparkline(account_id, website.id, date_range, force_refresh=True)),
            )
            if not stats.ok:
                logger.warning("Cache warm for %s failed: %s", website.name, stats.error)
            return stats.ok

        results = await asyncio.gather(*(refresh(w) for w in sites.value.value))
        return sum(1 for ok in results if ok)
