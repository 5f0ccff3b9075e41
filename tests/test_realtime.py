"""Test the realtime poller."""
from __future__ import annotations

import asyncio
import logging

import pytest

from insightflow.errors import NetworkError
from insightflow.realtime import RealtimePoller

from conftest import FakeProvider


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def poller(provider, snapshots):
    async def on_snapshot(snapshot):
        snapshots.append(snapshot)

    return RealtimePoller(provider, "site-1", on_snapshot, interval=0.01)


class TestTick:

    @pytest.mark.asyncio
    async def test_tick_delivers_snapshot(self, poller, snapshots):
        snapshot = await poller.tick()
        assert snapshot.active_visitors == 3
        assert snapshots == [snapshot]
        assert poller.last_snapshot is snapshot

    @pytest.mark.asyncio
    async def test_failed_tick_is_logged_not_raised(self, poller, provider, snapshots, monkeypatch, caplog):
        async def down(website_id):
            raise NetworkError("offline")

        monkeypatch.setattr(provider, "get_realtime", down)
        with caplog.at_level(logging.WARNING, logger="insightflow.realtime"):
            assert await poller.tick() is None
        assert snapshots == []
        assert "offline" in caplog.text

    @pytest.mark.asyncio
    async def test_handler_failure_keeps_snapshot(self, provider):
        async def broken(snapshot):
            raise RuntimeError("render failed")

        poller = RealtimePoller(provider, "site-1", broken)
        assert await poller.tick() is not None
        assert poller.last_snapshot is not None

    def test_interval_must_be_positive(self, provider):
        with pytest.raises(ValueError):
            RealtimePoller(provider, "site-1", None, interval=0)


class TestLoop:

    @pytest.mark.asyncio
    async def test_start_polls_until_stopped(self, poller, snapshots):
        poller.start()
        assert poller.running
        for _ in range(100):
            if len(snapshots) >= 2:
                break
            await asyncio.sleep(0.01)
        await poller.stop()
        assert not poller.running
        assert len(snapshots) >= 2

        count = len(snapshots)
        await asyncio.sleep(0.05)
        assert len(snapshots) == count

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, poller, provider, snapshots, monkeypatch):
        original = provider.get_realtime
        failures = []

        async def flaky(website_id):
            if not failures:
                failures.append(website_id)
                raise NetworkError("blip")
            return await original(website_id)

        monkeypatch.setattr(provider, "get_realtime", flaky)
        poller.start()
        for _ in range(100):
            if snapshots:
                break
            await asyncio.sleep(0.01)
        await poller.stop()
        assert failures == ["site-1"]
        assert snapshots

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, poller):
        poller.start()
        task = poller._task
        poller.start()
        assert poller._task is task
        await poller.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, poller):
        await poller.stop()
        assert not poller.running
