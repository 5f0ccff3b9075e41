"""
Umami analytics adapter.

Auth: username/password login at ``api/auth/login`` yields a bearer token.
Time bounds are sent as epoch milliseconds (``startAt``/``endAt``). The stats
endpoint computes the previous-period comparison server side, so one request
covers both periods.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from insightflow.date_range import DateRange
from insightflow.errors import AuthError, DecodeError, NotConfiguredError
from insightflow.models import (
    STAT_FIELDS,
    AccountCredentials,
    AnalyticsChartPoint,
    AnalyticsMetricItem,
    AnalyticsStats,
    AnalyticsWebsite,
    MetricKind,
    ProviderType,
    RealtimeEvent,
    RealtimeSnapshot,
    RealtimeTotals,
    SeriesKind,
    StatValue,
)
from insightflow.providers.analytics.base import AnalyticsProvider, normalize_server_url, parse_timestamp, to_int
from insightflow.transport import Transport

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT = 15.0


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _stat_from_payload(payload: Dict[str, Any], name: str) -> StatValue:
    """
    Normalise one stat from either response shape Umami has shipped:
    flat ``{"visitors": 10, "comparison": {"visitors": 8}}`` or nested
    ``{"visitors": {"value": 10, "prev": 8}}``.
    """
    raw = payload.get(name)
    if isinstance(raw, dict):
        return StatValue.from_periods(to_int(raw.get("value")), to_int(raw.get("prev")))
    comparison = payload.get("comparison") or {}
    if not isinstance(comparison, dict):
        raise DecodeError("Umami stats comparison is not an object")
    return StatValue.from_periods(to_int(raw), to_int(comparison.get(name)))


def _points(items: Any) -> List[AnalyticsChartPoint]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise DecodeError("Umami series is not a list")
    points = [
        AnalyticsChartPoint(date=parse_timestamp(item.get("x")), value=to_int(item.get("y")))
        for item in items
        if isinstance(item, dict)
    ]
    return sorted(points, key=lambda p: p.date)


def _counts(raw: Any) -> Optional[Dict[str, int]]:
    if not isinstance(raw, dict):
        return None
    return {str(k): to_int(v) for k, v in raw.items()}


class UmamiProvider(AnalyticsProvider):
    provider_type = ProviderType.UMAMI
    supported_metrics = frozenset(MetricKind)

    def __init__(self, transport: Transport) -> None:
        super().__init__(transport)
        self._token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self._server_url and self._token)

    def _auth(self) -> str:
        if not self.is_authenticated:
            raise NotConfiguredError("Umami adapter is not configured")
        return self._token

    async def authenticate(self, server_url: str, credentials: AccountCredentials) -> AccountCredentials:
        if not credentials.username or not credentials.password:
            raise AuthError("Umami login needs a username and a password")
        base = normalize_server_url(server_url)
        url = f"{base}/api/auth/login"
        body = json.dumps({"username": credentials.username, "password": credentials.password}).encode("utf-8")
        response = await self._transport.request(
            "POST",
            url,
            {"Content-Type": "application/json", "Accept": "application/json"},
            body,
            timeout=LOGIN_TIMEOUT,
        )
        if response.status_code != 200:
            logger.info("Umami login at %s failed with status %s", base, response.status_code)
            raise AuthError("Umami login failed")
        try:
            token = response.json()["token"]
        except (KeyError, TypeError) as e:
            raise DecodeError("Umami login response has no token") from e

        self._server_url = base
        self._token = token
        logger.info("Authenticated Umami account %s at %s", credentials.username, base)
        return AccountCredentials(token=token, username=credentials.username)

    def configure(self, server_url: str, credentials: AccountCredentials, sites: Optional[List[str]] = None) -> None:
        self._server_url = normalize_server_url(server_url)
        self._token = credentials.token

    def clear_configuration(self) -> None:
        self._server_url = None
        self._token = None

    async def get_websites(self) -> List[AnalyticsWebsite]:
        payload = await self._get_json("api/websites", token=self._auth())
        items = payload.get("data") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise DecodeError("Umami websites payload is not a list")
        websites = []
        for item in items:
            try:
                websites.append(
                    AnalyticsWebsite(
                        id=str(item["id"]),
                        name=str(item["name"]),
                        domain=item.get("domain") or item["name"],
                        share_id=item.get("shareId"),
                        provider=ProviderType.UMAMI,
                    )
                )
            except (KeyError, TypeError, AttributeError):
                logger.warning("Skipping malformed Umami website entry: %r", item)
        return websites

    def _bounds(self, date_range: DateRange) -> Tuple[int, int]:
        start, end = date_range.dates()
        return _epoch_ms(start), _epoch_ms(end)

    async def get_stats(self, website_id: str, date_range: DateRange) -> AnalyticsStats:
        start_at, end_at = self._bounds(date_range)
        payload = await self._get_json(
            f"api/websites/{website_id}/stats",
            token=self._auth(),
            params={"startAt": start_at, "endAt": end_at},
        )
        if not isinstance(payload, dict):
            raise DecodeError("Umami stats payload is not an object")
        return AnalyticsStats(**{name: _stat_from_payload(payload, name) for name in STAT_FIELDS})

    async def get_series(self, website_id: str, date_range: DateRange, kind: SeriesKind) -> List[AnalyticsChartPoint]:
        start_at, end_at = self._bounds(date_range)
        payload = await self._get_json(
            f"api/websites/{website_id}/pageviews",
            token=self._auth(),
            params={"startAt": start_at, "endAt": end_at, "unit": date_range.unit().value},
        )
        if not isinstance(payload, dict):
            raise DecodeError("Umami pageviews payload is not an object")
        key = "pageviews" if kind == SeriesKind.PAGEVIEWS else "sessions"
        return _points(payload.get(key))

    async def get_active_visitors(self, website_id: str) -> int:
        payload = await self._get_json(f"api/websites/{website_id}/active", token=self._auth())
        if isinstance(payload, dict):
            # older servers answer {"x": n}
            return to_int(payload.get("visitors", payload.get("x")))
        return to_int(payload)

    async def get_realtime(self, website_id: str) -> RealtimeSnapshot:
        payload = await self._get_json(f"api/realtime/{website_id}", token=self._auth())
        if not isinstance(payload, dict):
            raise DecodeError("Umami realtime payload is not an object")

        events = []
        raw_events = payload.get("events") or []
        if not isinstance(raw_events, list):
            raise DecodeError("Umami realtime events are not a list")
        for item in raw_events:
            if not isinstance(item, dict):
                continue
            events.append(
                RealtimeEvent(
                    kind=item.get("__type") or "event",
                    session_id=str(item.get("sessionId", "")),
                    created_at=parse_timestamp(item.get("createdAt")),
                    name=item.get("eventName"),
                    url_path=item.get("urlPath"),
                    referrer_domain=item.get("referrerDomain"),
                    country=item.get("country"),
                    browser=item.get("browser"),
                    os=item.get("os"),
                    device=item.get("device"),
                )
            )

        series = None
        raw_series = payload.get("series")
        if isinstance(raw_series, dict):
            series = {name: _points(points) for name, points in raw_series.items() if isinstance(points, list)}

        totals = None
        raw_totals = payload.get("totals")
        if isinstance(raw_totals, dict):
            totals = RealtimeTotals(
                views=raw_totals.get("views"),
                visitors=raw_totals.get("visitors"),
                events=raw_totals.get("events"),
                countries=raw_totals.get("countries"),
            )

        return RealtimeSnapshot(
            active_visitors=totals.visitors if totals else None,
            countries=_counts(payload.get("countries")),
            urls=_counts(payload.get("urls")),
            referrers=_counts(payload.get("referrers")),
            events=events,
            series=series,
            totals=totals,
        )

    async def get_metric_breakdown(
        self, website_id: str, date_range: DateRange, kind: MetricKind, limit: int = 10
    ) -> List[AnalyticsMetricItem]:
        self._require_supported(kind)
        start_at, end_at = self._bounds(date_range)
        payload = await self._get_json(
            f"api/websites/{website_id}/metrics",
            token=self._auth(),
            params={
                "startAt": start_at,
                "endAt": end_at,
                "type": kind.value,
                "unit": date_range.unit().value,
                "limit": limit,
            },
        )
        if not isinstance(payload, list):
            raise DecodeError("Umami metrics payload is not a list")
        return [
            AnalyticsMetricItem(name=str(item.get("x") or ""), value=to_int(item.get("y")))
            for item in payload
            if isinstance(item, dict)
        ]
