"""
Notification scheduler: daily and weekly digests per (account, website).

Preferences (per-site setting, delivery time, data source) are persisted in
``notification_settings.json``. Changing them never reschedules on its own:
callers run ``set_notification_time(...)`` and then ``reschedule()``.

``reschedule`` is a full reset: cancel everything, then register one
recurring trigger per enabled site with the id ``scheduled-{account}-{site}``.
``fire_now`` rebuilds every collaborator from disk and delivers immediately,
so a cron job or Cloud Scheduler request can run it in a fresh process.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from insightflow.date_range import LAST_7_DAYS, TODAY, YESTERDAY, DateRange
from insightflow.digest import DEFAULT_LOCALE, build_digest
from insightflow.errors import capture
from insightflow.fileio import load_json, write_json_atomic
from insightflow.providers.analytics.base import AnalyticsProvider
from insightflow.providers.notifications.base import CalendarTrigger, NotificationChannel, NotificationContent
from insightflow.providers.notifications.discord import DiscordNotificationChannel
from insightflow.registry import AccountRegistry, AnalyticsAccount
from insightflow.secrets import create_secret_store
from insightflow.transport import HttpxTransport

logger = logging.getLogger(__name__)

DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0
AUTO_TODAY_FROM_HOUR = 12
TRIGGER_PREFIX = "scheduled"


class NotificationSetting(str, Enum):
    DISABLED = "disabled"
    DAILY = "daily"
    WEEKLY = "weekly"


class NotificationDataSource(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    AUTO = "auto"


def effective_range(setting: NotificationSetting, data_source: NotificationDataSource, hour: int) -> DateRange:
    """
    Weekly digests always cover the last 7 days. Daily digests follow the
    data source; ``auto`` looks back at yesterday before noon and shows
    today-so-far from noon on.
    """
    if setting == NotificationSetting.WEEKLY:
        return LAST_7_DAYS
    if data_source == NotificationDataSource.TODAY:
        return TODAY
    if data_source == NotificationDataSource.YESTERDAY:
        return YESTERDAY
    return YESTERDAY if hour < AUTO_TODAY_FROM_HOUR else TODAY


def setting_key(account_id: str, website_id: str) -> str:
    return f"{account_id}/{website_id}"


def trigger_id(account_id: str, website_id: str) -> str:
    return f"{TRIGGER_PREFIX}-{account_id}-{website_id}"


def account_trigger_prefix(account_id: str) -> str:
    return f"{TRIGGER_PREFIX}-{account_id}-"


@dataclass(frozen=True)
class NotificationPreferences:
    settings: Dict[str, NotificationSetting] = field(default_factory=dict)
    hour: int = DEFAULT_HOUR
    minute: int = DEFAULT_MINUTE
    data_source: NotificationDataSource = NotificationDataSource.AUTO

    def setting_for(self, account_id: str, website_id: str) -> NotificationSetting:
        return self.settings.get(setting_key(account_id, website_id), NotificationSetting.DISABLED)

    def enabled_for(self, account_id: str) -> Dict[str, NotificationSetting]:
        """website id -> setting for the account's enabled sites."""
        prefix = f"{account_id}/"
        return {
            key[len(prefix):]: setting
            for key, setting in self.settings.items()
            if key.startswith(prefix) and setting != NotificationSetting.DISABLED
        }

    @property
    def any_enabled(self) -> bool:
        return any(s != NotificationSetting.DISABLED for s in self.settings.values())

    def any_enabled_for(self, account_ids: Iterable[str]) -> bool:
        """True when one of ``account_ids`` has an enabled site; settings of other accounts are ignored."""
        return any(self.enabled_for(account_id) for account_id in account_ids)

    def to_dict(self) -> Dict:
        return {
            "settings": {k: v.value for k, v in self.settings.items()},
            "hour": self.hour,
            "minute": self.minute,
            "dataSource": self.data_source.value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "NotificationPreferences":
        settings = {}
        for key, raw in (data.get("settings") or {}).items():
            try:
                settings[key] = NotificationSetting(raw)
            except ValueError:
                logger.warning("Ignoring unknown notification setting %r for %s", raw, key)
        try:
            data_source = NotificationDataSource(data.get("dataSource") or NotificationDataSource.AUTO.value)
        except ValueError:
            data_source = NotificationDataSource.AUTO
        return cls(
            settings=settings,
            hour=int(data.get("hour", DEFAULT_HOUR)),
            minute=int(data.get("minute", DEFAULT_MINUTE)),
            data_source=data_source,
        )


class NotificationSettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> NotificationPreferences:
        data = load_json(self.path, default={})
        if not isinstance(data, dict):
            return NotificationPreferences()
        try:
            return NotificationPreferences.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("Unreadable notification settings, using defaults: %s", e)
            return NotificationPreferences()

    def save(self, preferences: NotificationPreferences) -> None:
        write_json_atomic(self.path, preferences.to_dict())


@dataclass(frozen=True)
class PlannedDigest:
    identifier: str
    setting: NotificationSetting
    content: NotificationContent


async def _websites_for(
    account: AnalyticsAccount, provider: AnalyticsProvider, enabled: Dict[str, NotificationSetting]
) -> List[Tuple[str, str]]:
    """(id, name) for the enabled sites; falls back to bare ids when the list cannot be fetched."""
    result = await capture(provider.get_websites())
    if result.ok:
        names = {w.id: w.name for w in result.value}
        return [(site_id, names[site_id]) for site_id in enabled if site_id in names]
    logger.warning("Could not list websites for %s, using saved ids: %s", account.display_name, result.error)
    return [(site_id, site_id) for site_id in enabled]


async def plan_digests(
    registry: AccountRegistry, preferences: NotificationPreferences, locale: str = DEFAULT_LOCALE
) -> List[PlannedDigest]:
    """
    Build the digest for every enabled site of every account. Stats are
    fetched concurrently; a failed fetch yields a "data unavailable" digest
    instead of dropping the site.
    """
    planned: List[PlannedDigest] = []
    for account in registry.accounts:
        enabled = preferences.enabled_for(account.id)
        if not enabled:
            continue
        provider = registry.provider_for(account.id)
        websites = await _websites_for(account, provider, enabled)
        ranges = [effective_range(enabled[site_id], preferences.data_source, preferences.hour) for site_id, _ in websites]
        results = await asyncio.gather(
            *(capture(provider.get_stats(site_id, date_range)) for (site_id, _), date_range in zip(websites, ranges))
        )
        for (site_id, name), date_range, result in zip(websites, ranges, results):
            if not result.ok:
                logger.warning("Digest stats for %s failed: %s", name, result.error)
            content = build_digest(
                name,
                account.display_name,
                date_range,
                result.value if result.ok else None,
                locale,
                user_info={"accountId": account.id, "websiteId": site_id},
            )
            planned.append(PlannedDigest(trigger_id(account.id, site_id), enabled[site_id], content))
    return planned


class NotificationScheduler:
    def __init__(
        self,
        registry: AccountRegistry,
        channel: NotificationChannel,
        store: NotificationSettingsStore,
        locale: str = DEFAULT_LOCALE,
    ) -> None:
        self.registry = registry
        self.channel = channel
        self.store = store
        self.locale = locale
        self.preferences = store.load()

    def _update(self, preferences: NotificationPreferences) -> None:
        self.store.save(preferences)
        self.preferences = preferences

    # Commands. None of these reschedules; call reschedule() afterwards.

    def set_notification_time(self, hour: int, minute: int) -> None:
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"Invalid notification time {hour}:{minute}")
        self._update(replace(self.preferences, hour=hour, minute=minute))

    def set_data_source(self, data_source: NotificationDataSource) -> None:
        self._update(replace(self.preferences, data_source=NotificationDataSource(data_source)))

    def set_setting(self, account_id: str, website_id: str, setting: NotificationSetting) -> None:
        settings = dict(self.preferences.settings)
        settings[setting_key(account_id, website_id)] = NotificationSetting(setting)
        self._update(replace(self.preferences, settings=settings))

    def setting_for(self, account_id: str, website_id: str) -> NotificationSetting:
        return self.preferences.setting_for(account_id, website_id)

    def effective_range_for(self, setting: NotificationSetting) -> DateRange:
        return effective_range(setting, self.preferences.data_source, self.preferences.hour)

    async def forget_account(self, account_id: str) -> None:
        """Drop the account's settings and cancel its triggers."""
        prefix = f"{account_id}/"
        settings = {k: v for k, v in self.preferences.settings.items() if not k.startswith(prefix)}
        if len(settings) != len(self.preferences.settings):
            self._update(replace(self.preferences, settings=settings))
        trigger_prefix = account_trigger_prefix(account_id)
        pending = [i for i in await self.channel.pending_identifiers() if i.startswith(trigger_prefix)]
        if pending:
            await self.channel.cancel(pending)
        logger.info("Removed notification state for account %s", account_id)

    def _trigger(self, setting: NotificationSetting) -> CalendarTrigger:
        if setting == NotificationSetting.WEEKLY:
            return CalendarTrigger.weekly(self.preferences.hour, self.preferences.minute)
        return CalendarTrigger.daily(self.preferences.hour, self.preferences.minute)

    async def reschedule(self) -> List[str]:
        """Cancel every trigger and register one per enabled site. Returns the registered ids."""
        await self.channel.cancel_all()
        if not self.preferences.any_enabled_for(a.id for a in self.registry.accounts):
            logger.info("No websites have notifications enabled")
            return []
        if not await self.channel.permission_granted():
            logger.info("Notification permission not granted; nothing scheduled")
            return []

        registered = []
        for digest in await plan_digests(self.registry, self.preferences, self.locale):
            await self.channel.register_recurring(digest.identifier, self._trigger(digest.setting), digest.content)
            registered.append(digest.identifier)
        logger.info("Scheduled %d notification(s) at %02d:%02d", len(registered), self.preferences.hour, self.preferences.minute)
        return registered


async def deliver_digests(
    registry: AccountRegistry, channel: NotificationChannel, preferences: NotificationPreferences, locale: str = DEFAULT_LOCALE
) -> int:
    """Deliver every planned digest immediately. Returns how many were delivered."""
    if not preferences.any_enabled_for(a.id for a in registry.accounts) or not await channel.permission_granted():
        return 0
    delivered = 0
    for digest in await plan_digests(registry, preferences, locale):
        if await channel.deliver_now(digest.content):
            delivered += 1
    logger.info("Delivered %d digest(s)", delivered)
    return delivered


async def fire_now(config, *, channel: Optional[NotificationChannel] = None, transport=None, secrets=None) -> int:
    """
    Detached entry point: read accounts, credentials and preferences from
    disk and deliver every enabled digest now. Shares no state with any
    running scheduler.
    """
    owns_transport = transport is None
    transport = transport or HttpxTransport(timeout=config.http_timeout)
    try:
        if secrets is None:
            secrets = create_secret_store(
                config.secret_backend, config.secrets_path, config.master_key, config.google_project_id
            )
        registry = AccountRegistry(config.accounts_path, secrets, transport)
        registry.load()
        channel = channel or DiscordNotificationChannel(config.discord_webhook_url, config.triggers_path)
        preferences = NotificationSettingsStore(config.settings_path).load()
        return await deliver_digests(registry, channel, preferences, config.locale)
    finally:
        if owns_transport:
            await transport.aclose()
