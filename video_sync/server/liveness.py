"""Periodic garbage collection of abandoned rooms.

Per-connection heartbeats are client driven: the relay only answers pings
(and counts them as room activity), so the only server-side timer is the
room sweep.
"""

from __future__ import annotations

import asyncio
import logging

from ..common.constants import INACTIVITY_TIMEOUT, MAX_ROOM_AGE, SWEEP_INTERVAL
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class RoomSweeper:
    def __init__(
        self,
        registry: RoomRegistry,
        interval: float = SWEEP_INTERVAL,
        inactivity_timeout: float = INACTIVITY_TIMEOUT,
        max_age: float | None = MAX_ROOM_AGE,
    ) -> None:
        if inactivity_timeout < interval:
            raise ValueError("inactivity_timeout must be at least the sweep interval")
        self.registry = registry
        self.interval = interval
        self.inactivity_timeout = inactivity_timeout
        self.max_age = max_age
        self._task: asyncio.Task[None] | None = None

    async def run_once(self) -> list[str]:
        removed = await self.registry.sweep(self.inactivity_timeout, self.max_age)
        stats = self.registry.stats()
        if removed:
            logger.info(f"Sweep removed {len(removed)} room(s): {', '.join(removed)}")
        logger.debug(
            f"Relay stats: {stats['rooms']} rooms, {stats['members']} members, "
            f"{stats['connections']} live connections"
        )
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Room sweep failed: {type(e).__name__}: {e}", exc_info=True)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
