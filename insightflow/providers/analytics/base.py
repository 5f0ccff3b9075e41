"""
AnalyticsProvider ABC: implement this to add a new web analytics backend.

An adapter only normalises its vendor's REST API into the unified model in
``insightflow.models``. One adapter instance serves exactly one account:
configure it once (``configure`` or ``authenticate``) and do not share it
between two accounts of the same provider type.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, FrozenSet, List, Mapping, Optional
from urllib.parse import urlencode

from insightflow.date_range import DateRange
from insightflow.errors import AuthError, DecodeError, NetworkError, NotConfiguredError, UnsupportedMetric
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
)
from insightflow.transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

ISO_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


def parse_timestamp(value: Any, *, now: Optional[datetime] = None) -> datetime:
    """
    Parse a vendor ISO8601 timestamp: fractional seconds first, then whole
    seconds, then fall back to ``now`` so one bad value cannot sink a payload.
    """
    if isinstance(value, str):
        for fmt in ISO_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
    logger.debug("Unparseable timestamp %r, using current time", value)
    return now or datetime.now().astimezone()


def normalize_server_url(url: str) -> str:
    """Trim, drop trailing slashes and default to https:// when no scheme is given."""
    normalized = url.strip().rstrip("/")
    if not normalized.lower().startswith(("http://", "https://")):
        normalized = "https://" + normalized
    return normalized


def to_int(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


class AnalyticsProvider(ABC):
    provider_type: ProviderType
    supported_metrics: FrozenSet[MetricKind] = frozenset()
    # True when the account, not the server, owns the website list
    manages_sites: bool = False

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._server_url: Optional[str] = None

    @property
    def name(self) -> str:
        return self.provider_type.value

    @property
    def display_name(self) -> str:
        return self.provider_type.display_name

    @property
    def server_url(self) -> str:
        return self._server_url or ""

    @property
    @abstractmethod
    def is_authenticated(self) -> bool:
        ...

    def supports(self, kind: MetricKind) -> bool:
        return kind in self.supported_metrics

    def _require_supported(self, kind: MetricKind) -> None:
        if not self.supports(kind):
            raise UnsupportedMetric(self.name, kind.value)

    # Authentication

    @abstractmethod
    async def authenticate(self, server_url: str, credentials: AccountCredentials) -> AccountCredentials:
        """
        Validate credentials against the server and configure this adapter.
        Returns the credentials to persist (e.g. the issued token).
        Raises AuthError on bad credentials and NetworkError on transport failure.
        """

    @abstractmethod
    def configure(self, server_url: str, credentials: AccountCredentials, sites: Optional[List[str]] = None) -> None:
        """Bind previously persisted credentials without a network round trip."""

    @abstractmethod
    def clear_configuration(self) -> None:
        ...

    @property
    def sites(self) -> List[str]:
        return []

    async def add_site(self, domain: str) -> str:
        raise NotImplementedError(f"{self.display_name} lists websites from the server")

    def remove_site(self, domain: str) -> None:
        raise NotImplementedError(f"{self.display_name} lists websites from the server")

    # Capability

    @abstractmethod
    async def get_websites(self) -> List[AnalyticsWebsite]:
        ...

    @abstractmethod
    async def get_stats(self, website_id: str, date_range: DateRange) -> AnalyticsStats:
        """Stats for the range with change against the preceding comparable period."""

    @abstractmethod
    async def get_series(self, website_id: str, date_range: DateRange, kind: SeriesKind) -> List[AnalyticsChartPoint]:
        """Time series sorted ascending by date."""

    @abstractmethod
    async def get_active_visitors(self, website_id: str) -> int:
        ...

    @abstractmethod
    async def get_realtime(self, website_id: str) -> RealtimeSnapshot:
        ...

    @abstractmethod
    async def get_metric_breakdown(
        self, website_id: str, date_range: DateRange, kind: MetricKind, limit: int = 10
    ) -> List[AnalyticsMetricItem]:
        """Ranked breakdown for one dimension. Raises UnsupportedMetric for gaps."""

    # HTTP helpers shared by adapters

    def _url(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
        if not self._server_url:
            raise NotConfiguredError(f"{self.display_name} adapter is not configured")
        url = f"{self._server_url}/{endpoint.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    async def _send(
        self,
        method: str,
        url: str,
        *,
        token: str,
        payload: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        body = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            body = json.dumps(payload).encode("utf-8")
        return await self._transport.request(method, url, headers, body, timeout=timeout)

    def _raise_for_status(self, response: TransportResponse, url: str) -> None:
        if response.ok:
            return
        if response.status_code in (401, 403):
            raise AuthError(f"{self.display_name} rejected the credentials ({response.status_code})")
        message = f"{self.display_name} server error ({response.status_code}) for {url}"
        try:
            detail = response.json()
        except DecodeError:
            detail = None
        if isinstance(detail, dict) and detail.get("error"):
            message = f"{message}: {detail['error']}"
        raise NetworkError(message, status_code=response.status_code)

    async def _get_json(self, endpoint: str, *, token: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        url = self._url(endpoint, params)
        response = await self._send("GET", url, token=token)
        self._raise_for_status(response, url)
        return response.json()

    async def _post_json(self, endpoint: str, payload: Any, *, token: str) -> Any:
        url = self._url(endpoint)
        response = await self._send("POST", url, token=token, payload=payload)
        self._raise_for_status(response, url)
        return response.json()
