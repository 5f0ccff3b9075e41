"""
Pages report: parallel metric breakdowns and the combined path/title view.

Vendors report page paths and page titles as two unrelated breakdowns. The
combined view pairs them by view count (exact, then within 5 %, then within
15 %), which is a best-effort guess: two pages with similar traffic can get
each other's titles. Treat the pairing as display sugar, never as data.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from insightflow.date_range import DateRange
from insightflow.digest import DEFAULT_LOCALE, localized
from insightflow.errors import UnsupportedMetric
from insightflow.models import AnalyticsMetricItem, MetricKind
from insightflow.service import AnalyticsService

logger = logging.getLogger(__name__)

PAGES_LIMIT = 100


@dataclass(frozen=True)
class CombinedPage:
    title: str
    path: str
    views: int


async def load_breakdowns(
    service: AnalyticsService,
    account_id: str,
    website_id: str,
    date_range: DateRange,
    kinds: Iterable[MetricKind],
    limit: int = 10,
) -> Dict[MetricKind, List[AnalyticsMetricItem]]:
    """
    Fetch several breakdowns concurrently. Dimensions the account's provider
    does not support are left out of the result; other errors propagate.
    """
    kinds = list(kinds)
    results = await asyncio.gather(
        *(service.metrics(account_id, website_id, date_range, kind, limit) for kind in kinds),
        return_exceptions=True,
    )
    breakdowns: Dict[MetricKind, List[AnalyticsMetricItem]] = {}
    for kind, result in zip(kinds, results):
        if isinstance(result, UnsupportedMetric):
            logger.debug("Omitting %s breakdown: %s", kind.value, result)
            continue
        if isinstance(result, BaseException):
            raise result
        breakdowns[kind] = result.value
    return breakdowns


def title_from_path(path: str, locale: str = DEFAULT_LOCALE) -> str:
    """``/`` -> Home, ``/blog/my-first_post?x=1`` -> My First Post."""
    if path == "/":
        return localized("pages.home", locale)
    main = path.split("?", 1)[0]
    segments = [s for s in main.strip("/").split("/") if s]
    if not segments:
        return path
    words = segments[-1].replace("-", " ").replace("_", " ").split(" ")
    return " ".join(word.capitalize() for word in words)


def find_best_title(
    page: AnalyticsMetricItem, titles: List[AnalyticsMetricItem], used: Set[str]
) -> Optional[AnalyticsMetricItem]:
    candidates = [t for t in titles if t.name not in used]
    for t in candidates:
        if t.value == page.value:
            return t
    for tolerance in (max(1, int(page.value * 0.05)), max(2, int(page.value * 0.15))):
        for t in candidates:
            if abs(t.value - page.value) <= tolerance:
                return t
    return None


def combine_pages(
    paths: List[AnalyticsMetricItem], titles: List[AnalyticsMetricItem], locale: str = DEFAULT_LOCALE
) -> List[CombinedPage]:
    """Pair each path with an unused title, falling back to one derived from the path. Sorted by views."""
    used: Set[str] = set()
    combined = []
    for page in paths:
        match = find_best_title(page, titles, used)
        if match is not None:
            used.add(match.name)
            title = match.name
        else:
            title = title_from_path(page.name, locale)
        combined.append(CombinedPage(title=title, path=page.name, views=page.value))
    return sorted(combined, key=lambda p: p.views, reverse=True)


async def load_combined_pages(
    service: AnalyticsService,
    account_id: str,
    website_id: str,
    date_range: DateRange,
    locale: str = DEFAULT_LOCALE,
) -> List[CombinedPage]:
    breakdowns = await load_breakdowns(
        service, account_id, website_id, date_range, (MetricKind.PATH, MetricKind.TITLE), PAGES_LIMIT
    )
    return combine_pages(breakdowns.get(MetricKind.PATH, []), breakdowns.get(MetricKind.TITLE, []), locale)
