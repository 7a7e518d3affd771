"""Background sync triggers: a fixed interval and a one-off startup sync."""

from __future__ import annotations

import asyncio
import logging

from .engine import SyncEngine
from .models import SyncReport

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Run ``engine.run()`` on a timer.

    Overlap with manual syncs is handled by the engine's gate: a tick that
    lands while a pass is running becomes a skipped report.

    Args:
        engine: The engine to trigger.
    """

    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine
        self.interval_minutes: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_interval(self, minutes: float) -> asyncio.Task:
        """Start syncing every *minutes*.

        Raises:
            RuntimeError: If an interval is already running.
            ValueError: If *minutes* is not positive.
        """
        if self.running:
            raise RuntimeError("Sync interval is already running")
        if minutes <= 0:
            raise ValueError(f"Sync interval must be positive, got {minutes}")
        self.interval_minutes = minutes
        self._task = asyncio.create_task(self._interval_loop(minutes * 60))
        logger.info("Sync interval started: every %s minute(s)", minutes)
        return self._task

    async def stop_interval(self) -> None:
        """Stop the interval.  No-op if none is running."""
        task, self._task = self._task, None
        self.interval_minutes = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync interval stopped")

    async def restart_interval(self, minutes: float) -> asyncio.Task:
        await self.stop_interval()
        return self.start_interval(minutes)

    async def sync_on_startup(self) -> SyncReport:
        """Run one sync right away."""
        logger.info("Running startup sync")
        return await self.engine.run()

    async def _interval_loop(self, seconds: float) -> None:
        while True:
            await asyncio.sleep(seconds)
            try:
                report = await self.engine.run()
            except Exception:
                logger.exception("Interval sync raised")
                continue
            if not report.success:
                logger.warning("Interval sync failed: %s", report.error)
