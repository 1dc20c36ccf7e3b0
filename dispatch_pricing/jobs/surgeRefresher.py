"""
Surge Zone Refresher -- periodic background task.

Recomputes per-zone surge multipliers on a fixed interval and merges them
into the engine's ``ZoneSurgeMap``.  Runs independently of request traffic:
price calculations read whatever values are in the map at the time, before
or after any given refresh.

Usage (owned by the engine lifecycle)::

    refresher = SurgeZoneRefresher(zone_map, DemandGridZonePolicy(store))
    await refresher.start()
    ...
    await refresher.stop()

The loop uses ``asyncio.create_task`` and waits on an ``asyncio.Event``
between runs, so ``stop()`` returns promptly instead of sleeping out the
remaining interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from dispatch_pricing.services.surgeEstimator import ZoneSurgeMap, ZoneSurgePolicy

logger = logging.getLogger(__name__)

# How often (in seconds) zones are recomputed
REFRESH_INTERVAL_SECONDS: float = 60.0


class SurgeZoneRefresher:
    def __init__(
        self,
        zone_map: ZoneSurgeMap,
        policy: ZoneSurgePolicy,
        interval_seconds: float = REFRESH_INTERVAL_SECONDS,
    ) -> None:
        self._zone_map = zone_map
        self._policy = policy
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh_once(self) -> int:
        """Run one refresh cycle.  Returns the number of zones written.

        A failing policy is logged and leaves the previous values in place.
        """
        try:
            zones = await self._policy.compute()
        except Exception:
            logger.exception("Surge zone refresh failed; keeping previous zone values")
            return 0
        self._zone_map.merge(zones)
        self.cycles += 1
        if zones:
            logger.debug("Surge zones refreshed: %d zones updated", len(zones))
        return len(zones)

    async def _run(self) -> None:
        assert self._stop_event is not None
        logger.info("Surge zone refresher started (interval=%ss)", self._interval)
        while not self._stop_event.is_set():
            await self.refresh_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        if self.running:
            logger.warning("Surge zone refresher is already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self._interval)
        except asyncio.TimeoutError:
            logger.warning("Surge zone refresher did not stop within %ss; cancelled", self._interval)
        self._task = None
        logger.info("Surge zone refresher stopped")
