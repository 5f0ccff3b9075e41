"""
Unified analytics data model.

Both provider adapters normalise their vendor payloads into these types;
the cache, the scheduler and any UI consume only these.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ProviderType(str, Enum):
    UMAMI = "umami"
    PLAUSIBLE = "plausible"

    @property
    def display_name(self) -> str:
        return {ProviderType.UMAMI: "Umami", ProviderType.PLAUSIBLE: "Plausible"}[self]

    @property
    def cloud_url(self) -> str:
        return {
            ProviderType.UMAMI: "https://cloud.umami.is",
            ProviderType.PLAUSIBLE: "https://plausible.io",
        }[self]


class ServerType(str, Enum):
    CLOUD = "cloud"
    SELF_HOSTED = "selfHosted"


class MetricKind(str, Enum):
    PATH = "path"
    REFERRER = "referrer"
    BROWSER = "browser"
    OS = "os"
    DEVICE = "device"
    COUNTRY = "country"
    REGION = "region"
    CITY = "city"
    LANGUAGE = "language"
    SCREEN = "screen"
    EVENT = "event"
    QUERY = "query"
    TITLE = "title"
    HOSTNAME = "hostname"


class SeriesKind(str, Enum):
    PAGEVIEWS = "pageviews"
    VISITORS = "visitors"


def strip_scheme(url: str) -> str:
    return url.replace("https://", "").replace("http://", "")


@dataclass(frozen=True)
class AnalyticsWebsite:
    id: str
    name: str
    domain: str
    provider: ProviderType
    share_id: Optional[str] = None

    @property
    def display_domain(self) -> str:
        return strip_scheme(self.domain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "shareId": self.share_id,
            "provider": self.provider.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsWebsite":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            domain=str(data["domain"]),
            share_id=data.get("shareId"),
            provider=ProviderType(data.get("provider", ProviderType.UMAMI.value)),
        )


@dataclass(frozen=True)
class StatValue:
    value: int
    change: int

    @property
    def change_percentage(self) -> float:
        previous = self.value - self.change
        if previous == 0:
            return 0.0
        return self.change / previous * 100

    @property
    def is_positive_change(self) -> bool:
        return self.change >= 0

    @classmethod
    def from_periods(cls, current: int, previous: int) -> "StatValue":
        return cls(value=current, change=current - previous)

    def to_dict(self) -> Dict[str, int]:
        return {"value": self.value, "change": self.change}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatValue":
        return cls(value=int(data["value"]), change=int(data["change"]))


STAT_FIELDS = ("visitors", "pageviews", "visits", "bounces", "totaltime")


@dataclass(frozen=True)
class AnalyticsStats:
    visitors: StatValue
    pageviews: StatValue
    visits: StatValue
    bounces: StatValue
    totaltime: StatValue

    @property
    def bounce_rate(self) -> float:
        if self.visits.value <= 0:
            return 0.0
        return self.bounces.value / self.visits.value * 100

    @property
    def average_time(self) -> float:
        """Average visit duration in seconds."""
        if self.visits.value <= 0:
            return 0.0
        return self.totaltime.value / self.visits.value

    @property
    def average_time_formatted(self) -> str:
        seconds = int(self.average_time)
        return f"{seconds // 60}:{seconds % 60:02d}"

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {name: getattr(self, name).to_dict() for name in STAT_FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsStats":
        return cls(**{name: StatValue.from_dict(data[name]) for name in STAT_FIELDS})


@dataclass(frozen=True)
class AnalyticsChartPoint:
    date: datetime
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsChartPoint":
        return cls(date=datetime.fromisoformat(data["date"]), value=int(data["value"]))


@dataclass(frozen=True)
class AnalyticsMetricItem:
    name: str
    value: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsMetricItem":
        return cls(name=str(data["name"]), value=int(data["value"]))


# Realtime


@dataclass(frozen=True)
class RealtimeEvent:
    kind: str  # "pageview", "session" or "event"
    session_id: str
    created_at: datetime
    name: Optional[str] = None
    url_path: Optional[str] = None
    referrer_domain: Optional[str] = None
    country: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None

    @property
    def is_pageview(self) -> bool:
        return self.kind == "pageview"

    @property
    def is_custom_event(self) -> bool:
        return self.kind not in ("pageview", "session")


@dataclass(frozen=True)
class RealtimeTotals:
    views: Optional[int] = None
    visitors: Optional[int] = None
    events: Optional[int] = None
    countries: Optional[int] = None


@dataclass(frozen=True)
class RealtimeSnapshot:
    """Near-live activity. Every field is optional; adapters fill what their API exposes."""

    active_visitors: Optional[int] = None
    countries: Optional[Dict[str, int]] = None
    urls: Optional[Dict[str, int]] = None
    referrers: Optional[Dict[str, int]] = None
    events: Optional[List[RealtimeEvent]] = None
    series: Optional[Dict[str, List[AnalyticsChartPoint]]] = None
    totals: Optional[RealtimeTotals] = None
    fetched_at: datetime = field(default_factory=datetime.now)


# Credentials


@dataclass(frozen=True)
class AccountCredentials:
    """
    Login material for one account.

    Umami logs in with username/password and keeps the issued token;
    Plausible uses an API key. Passwords are never persisted.
    """

    token: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.token and not self.api_key

    @property
    def secret(self) -> str:
        """The bearer secret the adapter sends (Umami token or Plausible API key)."""
        return self.token or self.api_key or ""

    def without_password(self) -> "AccountCredentials":
        return AccountCredentials(token=self.token, api_key=self.api_key, username=self.username)
