"""
AppContext: every long-lived collaborator of one process, built once at startup
and passed explicitly to whatever needs it.

    context = AppContext.from_config(InsightFlowConfig.from_env())
    await context.registry.login(...)
    await context.scheduler.reschedule()
    await context.aclose()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from insightflow.cache import OfflineCache
from insightflow.config import InsightFlowConfig
from insightflow.providers.notifications.base import NotificationChannel
from insightflow.providers.notifications.discord import DiscordNotificationChannel
from insightflow.registry import AccountEvent, AccountRegistry, AnalyticsAccount
from insightflow.scheduler import NotificationScheduler, NotificationSettingsStore
from insightflow.secrets import SecretStore, create_secret_store
from insightflow.service import AnalyticsService
from insightflow.shared_credentials import SharedCredentials
from insightflow.transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: InsightFlowConfig
    transport: Transport
    secrets: SecretStore
    shared: SharedCredentials
    cache: OfflineCache
    registry: AccountRegistry
    service: AnalyticsService
    channel: NotificationChannel
    scheduler: NotificationScheduler
    signed_in: bool = field(default=False)

    @classmethod
    def from_config(
        cls,
        config: InsightFlowConfig,
        *,
        transport: Optional[Transport] = None,
        secrets: Optional[SecretStore] = None,
        channel: Optional[NotificationChannel] = None,
    ) -> "AppContext":
        transport = transport or HttpxTransport(timeout=config.http_timeout)
        secrets = secrets or create_secret_store(
            config.secret_backend, config.secrets_path, config.master_key, config.google_project_id
        )
        shared = SharedCredentials(config.shared_dir)
        cache = OfflineCache(config.cache_dir)
        registry = AccountRegistry(config.accounts_path, secrets, transport, shared)
        channel = channel or DiscordNotificationChannel(config.discord_webhook_url, config.triggers_path)
        scheduler = NotificationScheduler(
            registry, channel, NotificationSettingsStore(config.settings_path), config.locale
        )
        context = cls(
            config=config,
            transport=transport,
            secrets=secrets,
            shared=shared,
            cache=cache,
            registry=registry,
            service=AnalyticsService(registry, cache),
            channel=channel,
            scheduler=scheduler,
        )
        registry.subscribe(context._on_account_event)
        registry.load()
        context.signed_in = bool(registry.accounts)
        return context

    async def _on_account_event(self, event: AccountEvent, account: Optional[AnalyticsAccount]) -> None:
        if event == AccountEvent.REMOVED and account is not None:
            self.cache.clear_for_account(account.id)
            await self.scheduler.forget_account(account.id)
        elif event == AccountEvent.ADDED:
            self.signed_in = True
        elif event == AccountEvent.ALL_ACCOUNTS_REMOVED:
            self.signed_in = False
            self.cache.clear_all()
            logger.info("Last account removed; signed out")

    async def aclose(self) -> None:
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()
