"""Analytics backends behind the AnalyticsProvider interface."""

from __future__ import annotations

from insightflow.providers.analytics.base import AnalyticsProvider
from insightflow.providers.analytics.factory import PROVIDERS, create_provider
from insightflow.providers.analytics.plausible import PlausibleProvider
from insightflow.providers.analytics.umami import UmamiProvider

__all__ = ["AnalyticsProvider", "PROVIDERS", "PlausibleProvider", "UmamiProvider", "create_provider"]
