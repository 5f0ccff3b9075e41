"""
Discord webhook delivery for digests.

Recurring registrations are kept in a JSON file next to the app state so a
detached invocation (cron, Cloud Scheduler) can call ``deliver_due`` without
the process that registered them.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from insightflow.fileio import load_json, write_json_atomic
from insightflow.providers.notifications.base import CalendarTrigger, NotificationChannel, NotificationContent

logger = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000
DISCORD_TIMEOUT = 10


def format_message(content: NotificationContent) -> str:
    lines = [f"**{content.title}**"]
    if content.subtitle:
        lines.append(content.subtitle)
    lines.append(content.body)
    return "\n".join(lines)


def post_to_discord(webhook_url: str, message: str) -> bool:
    if len(message) > DISCORD_MESSAGE_LIMIT:
        message = message[: DISCORD_MESSAGE_LIMIT - 3] + "..."
    try:
        response = requests.post(webhook_url, json={"content": message}, timeout=DISCORD_TIMEOUT)
    except requests.RequestException as e:
        logger.error(f"Failed to post to Discord: {e}")
        return False
    if response.status_code != 204:
        logger.error(f"Failed to post to Discord: {response.status_code}, {response.text}")
        return False
    return True


class DiscordNotificationChannel(NotificationChannel):
    name = "discord"

    def __init__(self, webhook_url: Optional[str], state_path: Path) -> None:
        self.webhook_url = webhook_url
        self.state_path = Path(state_path)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        data = load_json(self.state_path, default={})
        return data if isinstance(data, dict) else {}

    def _save(self, registrations: Dict[str, Dict[str, Any]]) -> None:
        write_json_atomic(self.state_path, registrations)

    async def permission_granted(self) -> bool:
        return bool(self.webhook_url)

    async def register_recurring(self, identifier: str, trigger: CalendarTrigger, content: NotificationContent) -> None:
        registrations = self._load()
        registrations[identifier] = {"trigger": trigger.to_dict(), "content": content.to_dict()}
        self._save(registrations)
        logger.debug("Registered recurring notification %s", identifier)

    async def deliver_now(self, content: NotificationContent) -> bool:
        if not self.webhook_url:
            logger.warning("DISCORD_WEBHOOK_URL not set, dropping notification %r", content.title)
            return False
        return await asyncio.to_thread(post_to_discord, self.webhook_url, format_message(content))

    async def cancel_all(self) -> None:
        self._save({})

    async def cancel(self, identifiers: List[str]) -> None:
        registrations = self._load()
        remaining = {k: v for k, v in registrations.items() if k not in set(identifiers)}
        if len(remaining) != len(registrations):
            self._save(remaining)

    async def pending_identifiers(self) -> List[str]:
        return sorted(self._load())

    async def deliver_due(self, now: Optional[datetime] = None) -> int:
        """Deliver every registration whose trigger matches ``now`` (to the minute)."""
        now = now or datetime.now()
        delivered = 0
        for identifier, entry in sorted(self._load().items()):
            try:
                trigger = CalendarTrigger.from_dict(entry["trigger"])
                content = NotificationContent.from_dict(entry["content"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed notification registration %s", identifier)
                continue
            if trigger.matches(now) and await self.deliver_now(content):
                delivered += 1
        return delivered
