"""Test the command line entry point against a temporary data directory."""
from __future__ import annotations

import json

import pytest

from insightflow.__main__ import _parse_time, build_parser, main


@pytest.fixture(autouse=True)
def environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("INSIGHTFLOW_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("INSIGHTFLOW_SECRET_BACKEND", "file")
    monkeypatch.setenv("INSIGHTFLOW_MASTER_KEY", "cli-tests")
    monkeypatch.delenv("INSIGHTFLOW_SHARED_DIR", raising=False)
    monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("SECRET_MANAGER", raising=False)
    return tmp_path / "data"


class TestParser:

    @pytest.mark.parametrize("raw, expected", [("8:30", (8, 30)), ("07:05", (7, 5)), ("9", (9, 0))])
    def test_parse_time(self, raw, expected):
        assert _parse_time(raw) == expected

    def test_notify_requires_known_setting(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["notify", "acct", "site", "hourly"])


class TestCommands:

    def test_cache_size(self, capsys):
        assert main(["cache-size"]) == 0
        assert capsys.readouterr().out.strip() == "0 bytes"

    def test_accounts_empty(self, capsys):
        assert main(["accounts"]) == 0
        assert capsys.readouterr().out == ""

    def test_set_time_persists_and_reschedules(self, environment, capsys):
        assert main(["set-time", "7:15"]) == 0
        assert "Scheduled 0 notification(s)" in capsys.readouterr().out
        settings = json.loads((environment / "notification_settings.json").read_text())
        assert (settings["hour"], settings["minute"]) == (7, 15)

    def test_invalid_time_fails(self):
        assert main(["set-time", "25:00"]) == 1

    def test_notify_stores_setting(self, environment):
        assert main(["notify", "acct-1", "w1", "weekly"]) == 0
        settings = json.loads((environment / "notification_settings.json").read_text())
        assert settings["settings"] == {"acct-1/w1": "weekly"}

    def test_logout_unknown_account(self):
        assert main(["logout", "missing"]) == 1

    def test_deliver_due_with_no_registrations(self, capsys):
        assert main(["deliver-due"]) == 0
        assert capsys.readouterr().out.strip() == "0"

    def test_fire_now_without_settings(self, capsys):
        assert main(["fire-now"]) == 0
        assert "Delivered 0 digest(s)" in capsys.readouterr().out
