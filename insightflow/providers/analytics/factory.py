from __future__ import annotations

from typing import Callable, Dict

from insightflow.models import ProviderType
from insightflow.providers.analytics.base import AnalyticsProvider
from insightflow.providers.analytics.plausible import PlausibleProvider
from insightflow.providers.analytics.umami import UmamiProvider
from insightflow.transport import Transport

PROVIDERS: Dict[ProviderType, Callable[[Transport], AnalyticsProvider]] = {
    ProviderType.UMAMI: UmamiProvider,
    ProviderType.PLAUSIBLE: PlausibleProvider,
}


def create_provider(provider_type: ProviderType, transport: Transport) -> AnalyticsProvider:
    """
    Return a fresh, unconfigured adapter for ``provider_type``.

    Every account gets its own instance; adapters hold per-account
    credentials and must not be shared.
    """
    try:
        factory = PROVIDERS[ProviderType(provider_type)]
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown analytics provider: {provider_type!r}") from e
    return factory(transport)
