"""
Plausible analytics adapter.

Auth: a bearer API key. Stats, series and breakdowns all go through the v2
``api/v2/query`` endpoint; active visitors use the v1 realtime endpoint,
which every Plausible CE version still serves.

API keys cannot list sites, so the websites of a Plausible account are the
domains stored on the account (see ``add_site`` / ``remove_site``).
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from insightflow.date_range import DateRange, DateRangePreset, TimeUnit
from insightflow.errors import AuthError, DecodeError, NetworkError, NotConfiguredError
from insightflow.models import (
    AccountCredentials,
    AnalyticsChartPoint,
    AnalyticsMetricItem,
    AnalyticsStats,
    AnalyticsWebsite,
    MetricKind,
    ProviderType,
    RealtimeSnapshot,
    RealtimeTotals,
    SeriesKind,
    StatValue,
)
from insightflow.providers.analytics.base import AnalyticsProvider, normalize_server_url, to_int
from insightflow.transport import Transport

logger = logging.getLogger(__name__)

QUERY_ENDPOINT = "api/v2/query"
REALTIME_ENDPOINT = "api/v1/stats/realtime/visitors"
AUTH_TIMEOUT = 15.0
REALTIME_TIMEOUT = 10.0

STATS_METRICS = ["visitors", "pageviews", "visits", "bounce_rate", "visit_duration"]

DIMENSIONS: Dict[MetricKind, str] = {
    MetricKind.PATH: "event:page",
    MetricKind.REFERRER: "visit:source",
    MetricKind.BROWSER: "visit:browser",
    MetricKind.OS: "visit:os",
    MetricKind.DEVICE: "visit:device",
    MetricKind.COUNTRY: "visit:country",
    MetricKind.REGION: "visit:region",
    MetricKind.CITY: "visit:city",
    MetricKind.HOSTNAME: "event:hostname",
    MetricKind.EVENT: "event:goal",
}

TIME_DIMENSIONS = {
    TimeUnit.HOUR: "time:hour",
    TimeUnit.DAY: "time:day",
    TimeUnit.MONTH: "time:month",
}

# Presets with a native Plausible shortcut; everything else is sent as explicit dates.
NATIVE_RANGES = {
    DateRangePreset.TODAY: "day",
    DateRangePreset.LAST_7_DAYS: "7d",
    DateRangePreset.LAST_30_DAYS: "30d",
    DateRangePreset.THIS_MONTH: "month",
    DateRangePreset.THIS_YEAR: "year",
}

SERIES_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


def normalize_domain(domain: str) -> str:
    """``https://www.Example.com/`` -> ``example.com``"""
    normalized = domain.strip().replace("https://", "").replace("http://", "").rstrip("/")
    if normalized.startswith("www."):
        normalized = normalized[4:]
    return normalized.lower()


def _day_span(start: datetime, end: datetime) -> List[str]:
    return [start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d")]


def plausible_date_range(date_range: DateRange, now: Optional[datetime] = None) -> Union[str, List[str]]:
    native = NATIVE_RANGES.get(date_range.preset)
    if native:
        return native
    return _day_span(*date_range.dates(now))


def _parse_series_date(value: str) -> Optional[datetime]:
    for fmt in SERIES_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _results(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
        raise DecodeError("Plausible query payload has no results list")
    return [r for r in payload["results"] if isinstance(r, dict)]


def _metrics(result: Dict[str, Any]) -> List[float]:
    raw = result.get("metrics") or []
    if not isinstance(raw, list):
        raise DecodeError("Plausible result metrics are not a list")
    values = []
    for value in raw:
        try:
            values.append(float(value or 0))
        except (TypeError, ValueError):
            values.append(0.0)
    return values


def _first_dimension(result: Dict[str, Any], default: str = "") -> str:
    dims = result.get("dimensions") or []
    if not isinstance(dims, list):
        raise DecodeError("Plausible result dimensions are not a list")
    return str(dims[0]) if dims else default


class _PeriodTotals:
    """One row of the stats query, converted to absolute counts."""

    def __init__(self, results: List[Dict[str, Any]]) -> None:
        metrics = _metrics(results[0]) if results else []
        metrics += [0.0] * (len(STATS_METRICS) - len(metrics))
        self.visitors = int(metrics[0])
        self.pageviews = int(metrics[1])
        self.visits = int(metrics[2])
        # bounce_rate is a percentage, visit_duration an average in seconds
        self.bounces = int(round(metrics[3] * self.visits / 100))
        self.totaltime = int(metrics[4]) * self.visits


class PlausibleProvider(AnalyticsProvider):
    provider_type = ProviderType.PLAUSIBLE
    supported_metrics = frozenset(DIMENSIONS)
    manages_sites = True

    def __init__(self, transport: Transport) -> None:
        super().__init__(transport)
        self._api_key: Optional[str] = None
        self._sites: List[str] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self._server_url and self._api_key)

    @property
    def sites(self) -> List[str]:
        return list(self._sites)

    def _auth(self) -> str:
        if not self.is_authenticated:
            raise NotConfiguredError("Plausible adapter is not configured")
        return self._api_key

    async def authenticate(self, server_url: str, credentials: AccountCredentials) -> AccountCredentials:
        """
        Validate the key with an empty query: Plausible answers 400 (missing
        parameters) for a valid key and 401 for an invalid one.
        """
        if not credentials.api_key:
            raise AuthError("Plausible login needs an API key")
        base = normalize_server_url(server_url)
        url = f"{base}/{QUERY_ENDPOINT}"
        response = await self._send("POST", url, token=credentials.api_key, payload={}, timeout=AUTH_TIMEOUT)
        if response.status_code == 401:
            raise AuthError("Plausible rejected the API key")
        if response.status_code not in (200, 400):
            raise NetworkError(f"Plausible server error ({response.status_code})", status_code=response.status_code)

        self._server_url = base
        self._api_key = credentials.api_key
        logger.info("Authenticated Plausible API key at %s", base)
        return AccountCredentials(api_key=credentials.api_key)

    def configure(self, server_url: str, credentials: AccountCredentials, sites: Optional[List[str]] = None) -> None:
        self._server_url = normalize_server_url(server_url)
        self._api_key = credentials.api_key
        self._sites = list(sites or [])

    def clear_configuration(self) -> None:
        self._server_url = None
        self._api_key = None
        self._sites = []

    # Site management

    async def add_site(self, domain: str) -> str:
        """Validate ``domain`` with a 7-day visitors query and track it. Returns the normalised domain."""
        normalized = normalize_domain(domain)
        if not normalized:
            raise ValueError("Domain must not be empty")
        await self._query({"site_id": normalized, "metrics": ["visitors"], "date_range": "7d"})
        if normalized not in self._sites:
            self._sites.append(normalized)
        return normalized

    def remove_site(self, domain: str) -> None:
        normalized = normalize_domain(domain)
        self._sites = [site for site in self._sites if site != normalized]

    # Capability

    async def _query(self, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = await self._post_json(QUERY_ENDPOINT, body, token=self._auth())
        return _results(payload)

    async def get_websites(self) -> List[AnalyticsWebsite]:
        return [
            AnalyticsWebsite(id=domain, name=domain, domain=domain, provider=ProviderType.PLAUSIBLE)
            for domain in self._sites
        ]

    async def get_stats(self, website_id: str, date_range: DateRange) -> AnalyticsStats:
        now = datetime.now()
        current_body = {
            "site_id": website_id,
            "metrics": STATS_METRICS,
            "date_range": plausible_date_range(date_range, now),
        }
        previous_body = {
            "site_id": website_id,
            "metrics": STATS_METRICS,
            "date_range": _day_span(*date_range.previous_period(now)),
        }
        current_rows, previous_rows = await asyncio.gather(self._query(current_body), self._query(previous_body))
        current = _PeriodTotals(current_rows)
        previous = _PeriodTotals(previous_rows)
        return AnalyticsStats(
            visitors=StatValue.from_periods(current.visitors, previous.visitors),
            pageviews=StatValue.from_periods(current.pageviews, previous.pageviews),
            visits=StatValue.from_periods(current.visits, previous.visits),
            bounces=StatValue.from_periods(current.bounces, previous.bounces),
            totaltime=StatValue.from_periods(current.totaltime, previous.totaltime),
        )

    async def get_series(self, website_id: str, date_range: DateRange, kind: SeriesKind) -> List[AnalyticsChartPoint]:
        now = datetime.now()
        rows = await self._query(
            {
                "site_id": website_id,
                "metrics": [kind.value],
                "date_range": plausible_date_range(date_range, now),
                "dimensions": [TIME_DIMENSIONS[date_range.unit(now)]],
            }
        )
        points = []
        for row in rows:
            label = _first_dimension(row)
            date = _parse_series_date(label)
            if date is None:
                logger.debug("Skipping Plausible series point with unparseable date %r", label)
                continue
            metrics = _metrics(row)
            points.append(AnalyticsChartPoint(date=date, value=int(metrics[0]) if metrics else 0))
        return sorted(points, key=lambda p: p.date)

    async def get_active_visitors(self, website_id: str) -> int:
        url = self._url(REALTIME_ENDPOINT, {"site_id": website_id})
        response = await self._send("GET", url, token=self._auth(), timeout=REALTIME_TIMEOUT)
        self._raise_for_status(response, url)
        # the body is a bare integer
        return to_int(response.text.strip())

    async def _today_breakdown(self, website_id: str, dimension: str, limit: int) -> Dict[str, int]:
        rows = await self._query(
            {
                "site_id": website_id,
                "metrics": ["visitors"],
                "date_range": "day",
                "dimensions": [dimension],
                "limit": limit,
            }
        )
        return {_first_dimension(row, "Unknown"): int((_metrics(row) or [0])[0]) for row in rows}

    async def _today_pageviews(self, website_id: str) -> int:
        rows = await self._query({"site_id": website_id, "metrics": ["pageviews"], "date_range": "day"})
        metrics = _metrics(rows[0]) if rows else []
        return int(metrics[0]) if metrics else 0

    async def get_realtime(self, website_id: str, limit: int = 10) -> RealtimeSnapshot:
        """
        Plausible has no per-event realtime feed: active visitors come from the
        realtime endpoint and the breakdowns are today's totals.
        """
        active, urls, countries, pageviews = await asyncio.gather(
            self.get_active_visitors(website_id),
            self._today_breakdown(website_id, DIMENSIONS[MetricKind.PATH], limit),
            self._today_breakdown(website_id, DIMENSIONS[MetricKind.COUNTRY], limit),
            self._today_pageviews(website_id),
        )
        return RealtimeSnapshot(
            active_visitors=active,
            urls=urls,
            countries=countries,
            totals=RealtimeTotals(views=pageviews, visitors=active, countries=len(countries)),
        )

    async def get_metric_breakdown(
        self, website_id: str, date_range: DateRange, kind: MetricKind, limit: int = 10
    ) -> List[AnalyticsMetricItem]:
        self._require_supported(kind)
        rows = await self._query(
            {
                "site_id": website_id,
                "metrics": ["visitors"],
                "date_range": plausible_date_range(date_range),
                "dimensions": [DIMENSIONS[kind]],
                "limit": limit,
            }
        )
        return [
            AnalyticsMetricItem(name=_first_dimension(row, "Unknown"), value=int((_metrics(row) or [0])[0]))
            for row in rows
        ]
