"""Test Discord delivery and the file-backed recurring registrations."""
from __future__ import annotations

from datetime import datetime

import pytest
import requests

from insightflow.providers.notifications.base import CalendarTrigger, NotificationContent
from insightflow.providers.notifications.discord import (
    DISCORD_MESSAGE_LIMIT,
    DiscordNotificationChannel,
    format_message,
    post_to_discord,
)

WEBHOOK = "https://discord.com/api/webhooks/1/abc"


class FakeResponse:
    def __init__(self, status_code=204, text=""):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, json=None, timeout=None):
        sent.append((url, json["content"]))
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    return sent


@pytest.fixture
def channel(tmp_path):
    return DiscordNotificationChannel(WEBHOOK, tmp_path / "scheduled_notifications.json")


def content(title="Blog (Work)"):
    return NotificationContent(title=title, subtitle="Yesterday", body="120 Visitors ↑20%")


# ---------------------------------------------------------------------------
# Webhook posting
# ---------------------------------------------------------------------------


class TestPosting:

    def test_message_layout(self):
        assert format_message(content()) == "**Blog (Work)**\nYesterday\n120 Visitors ↑20%"

    def test_long_messages_are_truncated(self, posts):
        assert post_to_discord(WEBHOOK, "x" * (DISCORD_MESSAGE_LIMIT + 50))
        assert len(posts[0][1]) == DISCORD_MESSAGE_LIMIT
        assert posts[0][1].endswith("...")

    def test_non_204_is_failure(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda url, json=None, timeout=None: FakeResponse(400, "bad"))
        assert post_to_discord(WEBHOOK, "hi") is False

    def test_request_exception_is_failure(self, monkeypatch):
        def boom(url, json=None, timeout=None):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", boom)
        assert post_to_discord(WEBHOOK, "hi") is False


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class TestChannel:

    @pytest.mark.asyncio
    async def test_permission_follows_webhook(self, tmp_path):
        assert await DiscordNotificationChannel(WEBHOOK, tmp_path / "t.json").permission_granted()
        assert not await DiscordNotificationChannel(None, tmp_path / "t.json").permission_granted()

    @pytest.mark.asyncio
    async def test_deliver_now(self, channel, posts):
        assert await channel.deliver_now(content())
        assert posts == [(WEBHOOK, "**Blog (Work)**\nYesterday\n120 Visitors ↑20%")]

    @pytest.mark.asyncio
    async def test_deliver_without_webhook(self, tmp_path, posts):
        assert not await DiscordNotificationChannel(None, tmp_path / "t.json").deliver_now(content())
        assert posts == []

    @pytest.mark.asyncio
    async def test_registrations_persist_across_instances(self, channel, tmp_path):
        await channel.register_recurring("scheduled-a-1", CalendarTrigger.daily(9, 0), content())
        await channel.register_recurring("scheduled-a-1", CalendarTrigger.daily(10, 0), content())
        other = DiscordNotificationChannel(WEBHOOK, channel.state_path)
        assert await other.pending_identifiers() == ["scheduled-a-1"]
        assert await other.pending_count() == 1

    @pytest.mark.asyncio
    async def test_cancel_and_cancel_all(self, channel):
        for identifier in ("scheduled-a-1", "scheduled-a-2", "scheduled-b-1"):
            await channel.register_recurring(identifier, CalendarTrigger.daily(9, 0), content())
        await channel.cancel(["scheduled-a-1", "missing"])
        assert await channel.pending_identifiers() == ["scheduled-a-2", "scheduled-b-1"]
        await channel.cancel_all()
        assert await channel.pending_identifiers() == []


class TestDeliverDue:

    @pytest.mark.asyncio
    async def test_only_matching_triggers_fire(self, channel, posts):
        await channel.register_recurring("daily", CalendarTrigger.daily(9, 0), content("Daily"))
        await channel.register_recurring("weekly", CalendarTrigger.weekly(9, 0), content("Weekly"))
        await channel.register_recurring("later", CalendarTrigger.daily(18, 30), content("Later"))

        # 2026-03-02 is a Monday
        assert await channel.deliver_due(datetime(2026, 3, 2, 9, 0)) == 2
        # Tuesday: weekly does not fire
        assert await channel.deliver_due(datetime(2026, 3, 3, 9, 0)) == 1
        assert [message.split("\n")[0] for _, message in posts] == ["**Daily**", "**Weekly**", "**Daily**"]

    @pytest.mark.asyncio
    async def test_registrations_survive_delivery(self, channel, posts):
        await channel.register_recurring("daily", CalendarTrigger.daily(9, 0), content())
        await channel.deliver_due(datetime(2026, 3, 2, 9, 0))
        assert await channel.pending_identifiers() == ["daily"]

    @pytest.mark.asyncio
    async def test_malformed_registration_is_skipped(self, channel, posts):
        channel.state_path.write_text('{"broken": {"trigger": {"hour": 99}}, "ok": {"trigger": {"hour": 9, "minute": 0}, "content": {"title": "T", "body": "B"}}}')
        assert await channel.deliver_due(datetime(2026, 3, 2, 9, 0)) == 1
