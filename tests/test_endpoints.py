"""Test the Flask task endpoints with injected collaborators."""
from __future__ import annotations

import json

import httpx
import pytest

from app import create_app
from insightflow.secrets import SecretKey
from insightflow.scheduler import NotificationPreferences, NotificationSetting, NotificationSettingsStore

from conftest import json_response, make_transport


def umami(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/websites":
        return json_response({"data": [{"id": "w1", "name": "Blog", "domain": "blog.io"}]})
    if request.url.path == "/api/websites/w1/stats":
        return json_response({"visitors": 5, "pageviews": 9, "visits": 6, "bounces": 1, "totaltime": 30})
    return json_response({"error": "not found"}, 404)


@pytest.fixture
def overrides(secrets, channel):
    return {"transport": make_transport(umami), "secrets": secrets, "channel": channel}


@pytest.fixture
def client(config, overrides):
    app = create_app(config, overrides)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def stored_account(config, secrets):
    """One Umami account with site w1 set to daily, written the way the registry persists it."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.accounts_path.write_text(
        json.dumps(
            {
                "accounts": [
                    {"id": "acct-1", "name": "Work", "serverURL": "https://umami.example.com", "providerType": "umami"}
                ],
                "activeAccountId": "acct-1",
            }
        )
    )
    secrets.scoped("acct-1").save("tok", SecretKey.TOKEN)
    NotificationSettingsStore(config.settings_path).save(
        NotificationPreferences(settings={"acct-1/w1": NotificationSetting.DAILY})
    )
    return "acct-1"


class TestService:

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.get_json() == {"status": "healthy", "service": "insightflow-core"}

    def test_manifest_lists_every_task(self, client):
        tools = client.get("/tasks/manifest").get_json()["tools"]
        assert {t["path"] for t in tools} == {
            "/tasks/notifications/fire",
            "/tasks/notifications/reschedule",
            "/tasks/notifications/deliver_due",
            "/tasks/cache/clear_expired",
            "/tasks/cache/size",
        }


class TestNotifications:

    def test_fire_delivers_enabled_digests(self, client, stored_account, channel):
        response = client.post("/tasks/notifications/fire")
        assert response.status_code == 200
        assert response.get_json() == {"status": "success", "delivered": 1}
        assert channel.delivered[0].title == "Blog (Work)"

    def test_fire_with_nothing_enabled(self, client, channel):
        assert client.post("/tasks/notifications/fire").get_json()["delivered"] == 0
        assert channel.delivered == []

    def test_reschedule(self, client, stored_account, channel):
        response = client.post("/tasks/notifications/reschedule")
        assert response.get_json() == {"status": "success", "scheduled": ["scheduled-acct-1-w1"]}
        assert list(channel.registered) == ["scheduled-acct-1-w1"]

    def test_deliver_due_needs_a_polling_channel(self, client):
        response = client.post("/tasks/notifications/deliver_due")
        assert response.status_code == 502
        assert "error" in response.get_json()

    def test_get_is_not_allowed(self, client):
        assert client.get("/tasks/notifications/fire").status_code == 405


class TestCache:

    def test_size_of_empty_cache(self, client):
        assert client.get("/tasks/cache/size").get_json() == {"bytes": 0, "formatted": "0 bytes"}

    def test_clear_expired(self, client, config):
        config.cache_dir.mkdir(parents=True)
        (config.cache_dir / "stats_a.s_today.json").write_text(
            json.dumps({"data": {}, "cachedAt": "2020-01-01T00:00:00+00:00", "expiresAt": "2020-01-01T01:00:00+00:00"})
        )
        (config.cache_dir / "stats_a.s_7d.json").write_text("not json")
        body = client.post("/tasks/cache/clear_expired").get_json()
        assert body["status"] == "success"
        assert body["removed"] == 2
        assert list(config.cache_dir.iterdir()) == []
