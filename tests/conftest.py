"""
Shared fixtures for the InsightFlow test suite.

Everything runs offline: vendor APIs are faked with ``httpx.MockTransport``,
state lives under ``tmp_path`` and delivery goes to an in-memory channel.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

import httpx
import pytest

from insightflow.config import InsightFlowConfig
from insightflow.date_range import DateRange
from insightflow.errors import NetworkError
from insightflow.models import (
    AccountCredentials,
    AnalyticsChartPoint,
    AnalyticsMetricItem,
    AnalyticsStats,
    AnalyticsWebsite,
    MetricKind,
    ProviderType,
    RealtimeSnapshot,
    SeriesKind,
    StatValue,
)
from insightflow.providers.analytics.base import AnalyticsProvider, normalize_server_url
from insightflow.providers.notifications.base import CalendarTrigger, NotificationChannel, NotificationContent
from insightflow.secrets import InMemorySecretStore
from insightflow.transport import HttpxTransport


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------


def make_transport(handler: Callable[[httpx.Request], httpx.Response]) -> HttpxTransport:
    return HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


def request_json(request: httpx.Request):
    return json.loads(request.content or b"null")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class Clock:
    """Settable clock for cache TTL tests."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def make_stats(visitors=(120, 20), pageviews=(300, -30), visits=(150, 0), bounces=(60, 0), totaltime=(9000, 0)) -> AnalyticsStats:
    return AnalyticsStats(
        visitors=StatValue(*visitors),
        pageviews=StatValue(*pageviews),
        visits=StatValue(*visits),
        bounces=StatValue(*bounces),
        totaltime=StatValue(*totaltime),
    )


class FakeProvider(AnalyticsProvider):
    """In-memory adapter recording the calls made to it."""

    provider_type = ProviderType.UMAMI
    supported_metrics = frozenset(MetricKind) - {MetricKind.TITLE}

    def __init__(self, transport=None) -> None:
        super().__init__(transport)
        self.credentials: Optional[AccountCredentials] = None
        self.websites: List[AnalyticsWebsite] = [
            AnalyticsWebsite(id="site-1", name="Blog", domain="blog.example.com", provider=ProviderType.UMAMI),
            AnalyticsWebsite(id="site-2", name="Shop", domain="shop.example.com", provider=ProviderType.UMAMI),
        ]
        self.stats = make_stats()
        self.failing_sites: Set[str] = set()
        self.fail_websites = False
        self.breakdowns: Dict[MetricKind, List[AnalyticsMetricItem]] = {}
        self.calls: List[tuple] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self._server_url and self.credentials and not self.credentials.is_empty)

    async def authenticate(self, server_url, credentials):
        self.calls.append(("authenticate", server_url))
        self.configure(server_url, AccountCredentials(token="issued-token", username=credentials.username))
        return self.credentials

    def configure(self, server_url, credentials, sites=None):
        self._server_url = normalize_server_url(server_url)
        self.credentials = credentials

    def clear_configuration(self):
        self._server_url = None
        self.credentials = None

    async def get_websites(self):
        self.calls.append(("get_websites",))
        if self.fail_websites:
            raise NetworkError("websites unavailable")
        return list(self.websites)

    async def get_stats(self, website_id, date_range: DateRange):
        self.calls.append(("get_stats", website_id, date_range.preset))
        if website_id in self.failing_sites:
            raise NetworkError("stats unavailable", status_code=503)
        return self.stats

    async def get_series(self, website_id, date_range, kind: SeriesKind):
        self.calls.append(("get_series", website_id, kind))
        return [AnalyticsChartPoint(datetime(2026, 3, 2, h), h * 10) for h in range(3)]

    async def get_active_visitors(self, website_id):
        return 3

    async def get_realtime(self, website_id):
        self.calls.append(("get_realtime", website_id))
        return RealtimeSnapshot(active_visitors=3)

    async def get_metric_breakdown(self, website_id, date_range, kind, limit=10):
        self._require_supported(kind)
        self.calls.append(("get_metric_breakdown", website_id, kind, limit))
        return list(self.breakdowns.get(kind, []))[:limit]


class FakeChannel(NotificationChannel):
    name = "fake"

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.registered: Dict[str, tuple] = {}
        self.delivered: List[NotificationContent] = []
        self.cancel_all_calls = 0

    async def permission_granted(self) -> bool:
        return self.granted

    async def register_recurring(self, identifier: str, trigger: CalendarTrigger, content: NotificationContent) -> None:
        self.registered[identifier] = (trigger, content)

    async def deliver_now(self, content: NotificationContent) -> bool:
        self.delivered.append(content)
        return True

    async def cancel_all(self) -> None:
        self.cancel_all_calls += 1
        self.registered.clear()

    async def cancel(self, identifiers: List[str]) -> None:
        for identifier in identifiers:
            self.registered.pop(identifier, None)

    async def pending_identifiers(self) -> List[str]:
        return sorted(self.registered)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def secrets():
    return InMemorySecretStore()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def fake_providers():
    """Every FakeProvider the registry creates, in creation order."""
    return []


@pytest.fixture
def provider_factory(fake_providers):
    def factory(provider_type, transport):
        provider = FakeProvider(transport)
        provider.provider_type = ProviderType(provider_type)
        provider.manages_sites = provider.provider_type == ProviderType.PLAUSIBLE
        fake_providers.append(provider)
        return provider

    return factory


@pytest.fixture
def config(tmp_path):
    return InsightFlowConfig(
        data_dir=tmp_path / "data",
        shared_dir=tmp_path / "shared",
        secret_backend="memory",
        discord_webhook_url=None,
    )
