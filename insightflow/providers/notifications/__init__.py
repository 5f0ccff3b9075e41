"""Digest delivery channels."""

from __future__ import annotations

from insightflow.providers.notifications.base import CalendarTrigger, NotificationChannel, NotificationContent
from insightflow.providers.notifications.discord import DiscordNotificationChannel

__all__ = ["CalendarTrigger", "DiscordNotificationChannel", "NotificationChannel", "NotificationContent"]
