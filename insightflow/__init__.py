"""InsightFlow core: one client layer over Umami and Plausible, an offline cache and scheduled digests."""

from __future__ import annotations

from insightflow.date_range import DateRange, DateRangePreset
from insightflow.errors import (
    AuthError,
    CacheError,
    DecodeError,
    InsightFlowError,
    NetworkError,
    UnsupportedMetric,
)
from insightflow.models import AnalyticsStats, AnalyticsWebsite, MetricKind, ProviderType, StatValue

__version__ = "1.0.0"

__all__ = [
    "AnalyticsStats",
    "AnalyticsWebsite",
    "AuthError",
    "CacheError",
    "DateRange",
    "DateRangePreset",
    "DecodeError",
    "InsightFlowError",
    "MetricKind",
    "NetworkError",
    "ProviderType",
    "StatValue",
    "UnsupportedMetric",
]
