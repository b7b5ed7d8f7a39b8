from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from ..pricing.cache import PriceCache

logger = logging.getLogger("pricecache.scheduler.refresh")


@dataclass(slots=True)
class PriceRefreshSchedulerStatus:
    last_run_at: datetime | None = None
    runs: int = 0
    last_error: str | None = None


class PriceRefreshScheduler:
    """Periodically refreshes the cache so readers rarely see stale prices."""

    def __init__(self, cache: PriceCache, *, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("Refresh interval must be positive")
        self._cache = cache
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.status = PriceRefreshSchedulerStatus()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._task:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="price-refresh-scheduler")
        logger.info("Price refresh scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Price refresh scheduler stopped")

    async def run_once(self) -> None:
        self.status.last_run_at = datetime.now(timezone.utc)
        self.status.runs += 1
        # Joins a refresh started by a reader instead of starting a second one.
        outcome = await asyncio.shield(self._cache.trigger_refresh())
        self.status.last_error = None if outcome.result != "failed" else "refresh failed"

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover - trigger_refresh absorbs errors
                self.status.last_error = str(exc)
                logger.exception("Scheduled price refresh failed: %s", exc)
            await asyncio.sleep(self._interval)


__all__ = ["PriceRefreshScheduler", "PriceRefreshSchedulerStatus"]
