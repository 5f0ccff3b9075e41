"""
RealtimePoller: repeatedly fetch a realtime snapshot for one website.

    poller = RealtimePoller(provider, website_id, on_snapshot)
    poller.start()
    ...
    await poller.stop()

A failing tick is logged and the loop keeps going. ``stop`` cancels the
task, so no fetch starts after it returns.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from insightflow.errors import InsightFlowError
from insightflow.models import RealtimeSnapshot
from insightflow.providers.analytics.base import AnalyticsProvider

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10.0

SnapshotHandler = Callable[[RealtimeSnapshot], Awaitable[None]]


class RealtimePoller:
    def __init__(
        self,
        provider: AnalyticsProvider,
        website_id: str,
        on_snapshot: SnapshotHandler,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.provider = provider
        self.website_id = website_id
        self.interval = interval
        self._on_snapshot = on_snapshot
        self._task: Optional[asyncio.Task] = None
        self.last_snapshot: Optional[RealtimeSnapshot] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[RealtimeSnapshot]:
        """One poll. Errors are logged, never raised."""
        try:
            snapshot = await self.provider.get_realtime(self.website_id)
        except InsightFlowError as e:
            logger.warning("Realtime poll for %s failed: %s", self.website_id, e)
            return None
        except Exception:
            logger.exception("Unexpected error polling realtime data for %s", self.website_id)
            return None
        self.last_snapshot = snapshot
        try:
            await self._on_snapshot(snapshot)
        except Exception:
            logger.exception("Realtime snapshot handler failed")
        return snapshot

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug("Started realtime polling for %s every %ss", self.website_id, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Stopped realtime polling for %s", self.website_id)
