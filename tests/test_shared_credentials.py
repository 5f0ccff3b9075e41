"""Test the encrypted widget credentials projection."""
from __future__ import annotations

import json
from datetime import datetime

import pytest

from insightflow.date_range import TimeUnit
from insightflow.errors import DecodeError
from insightflow.models import ProviderType
from insightflow.shared_credentials import (
    KEY_BYTES,
    SharedCredentials,
    WidgetCredentials,
    WidgetTimeRange,
)


@pytest.fixture
def shared(tmp_path):
    return SharedCredentials(tmp_path / "shared")


def sample() -> WidgetCredentials:
    return WidgetCredentials(
        server_url="https://umami.example.com",
        token="tok-123",
        provider_type=ProviderType.UMAMI,
        website_id="w1",
        website_name="Blog",
        time_range=WidgetTimeRange.LAST_7_DAYS,
    )


class TestEncryption:

    def test_save_then_load(self, shared):
        assert shared.save(sample())
        assert shared.load() == sample()
        assert len(shared.key_path.read_bytes()) == KEY_BYTES

    def test_file_is_not_plaintext(self, shared):
        shared.save(sample())
        blob = shared.path.read_bytes()
        assert b"tok-123" not in blob
        assert b"umami.example.com" not in blob

    def test_key_is_reused(self, shared):
        shared.save(sample())
        key = shared.key_path.read_bytes()
        shared.save(sample())
        assert shared.key_path.read_bytes() == key

    def test_tampered_file_is_discarded(self, shared):
        shared.save(sample())
        blob = bytearray(shared.path.read_bytes())
        blob[-1] ^= 0xFF
        shared.path.write_bytes(bytes(blob))
        assert shared.load() is None

    def test_missing_key_is_discarded(self, shared):
        shared.save(sample())
        shared.key_path.unlink()
        assert shared.load() is None

    def test_nothing_saved(self, shared):
        assert shared.load() is None

    def test_delete_removes_everything(self, shared):
        shared.save(sample())
        shared.delete()
        assert not shared.path.exists()
        assert not shared.key_path.exists()
        assert shared.load() is None


class TestLegacyMigration:

    def test_plaintext_file_is_migrated(self, shared):
        shared.directory.mkdir(parents=True)
        shared.legacy_path.write_text(
            json.dumps({"serverURL": "https://u.io", "token": "old", "timeRange": "Gestern"})
        )
        credentials = shared.load()
        assert credentials.token == "old"
        assert credentials.provider_type == ProviderType.UMAMI
        assert credentials.time_range == WidgetTimeRange.YESTERDAY
        assert not shared.legacy_path.exists()
        assert shared.path.exists()
        assert shared.load() == credentials

    def test_unreadable_legacy_file_is_ignored(self, shared):
        shared.directory.mkdir(parents=True)
        shared.legacy_path.write_text("{not json")
        assert shared.load() is None


class TestPayload:

    def test_plausible_projection_carries_sites(self):
        credentials = WidgetCredentials(
            server_url="https://plausible.io", token="key", provider_type=ProviderType.PLAUSIBLE, sites=["a.io"]
        )
        data = credentials.to_dict()
        assert data["providerType"] == "plausible"
        assert WidgetCredentials.from_dict(data).sites == ["a.io"]

    def test_missing_token_is_decode_error(self):
        with pytest.raises(DecodeError):
            WidgetCredentials.from_dict({"serverURL": "https://u.io"})


class TestWidgetTimeRange:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("today", WidgetTimeRange.TODAY),
            ("7d", WidgetTimeRange.LAST_7_DAYS),
            ("Heute", WidgetTimeRange.TODAY),
            ("Gestern", WidgetTimeRange.YESTERDAY),
            ("7 Tage", WidgetTimeRange.LAST_7_DAYS),
            ("30 Tage", WidgetTimeRange.LAST_30_DAYS),
            ("fortnight", None),
            (None, None),
        ],
    )
    def test_parse(self, raw, expected):
        assert WidgetTimeRange.parse(raw) == expected

    def test_units(self):
        assert WidgetTimeRange.YESTERDAY.unit == TimeUnit.HOUR
        assert WidgetTimeRange.LAST_30_DAYS.unit == TimeUnit.DAY

    def test_bounds(self):
        now = datetime(2026, 3, 10, 15, 30)
        start, end = WidgetTimeRange.LAST_7_DAYS.bounds(now)
        assert start == datetime(2026, 3, 4)
        assert end == now
        start, end = WidgetTimeRange.YESTERDAY.bounds(now)
        assert start == datetime(2026, 3, 9)
        assert end.date() == start.date()
        assert end.hour == 23
