"""Periodic trigger for sync cycles with an overlap guard."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import Enum

from imessage_sync.core.exceptions import ImessageSyncError
from imessage_sync.core.models import CycleResult

logger = logging.getLogger(__name__)

CycleRunner = Callable[[], Awaitable[CycleResult]]


class TickOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class Scheduler:
    """Run one sync cycle per interval, never two at once.

    A tick that fires while a cycle is still running is skipped with a
    warning instead of queued. Cycle failures are logged and the timer keeps
    going; the next tick retries from the last committed watermark.
    """

    def __init__(self, run_cycle: CycleRunner, interval: timedelta) -> None:
        if interval <= timedelta(0):
            raise ValueError("Sync interval must be positive")
        self._run_cycle = run_cycle
        self._interval = interval
        self._running = False
        self._stop = asyncio.Event()
        self._inflight: asyncio.Task[TickOutcome] | None = None
        self.last_result: CycleResult | None = None

    @property
    def running(self) -> bool:
        """True while a cycle is in flight."""
        return self._running

    async def tick(self) -> TickOutcome:
        """Start a cycle unless one is already running."""
        if self._running:
            logger.warning("Sync already in progress, skipping this tick")
            return TickOutcome.SKIPPED

        self._running = True
        try:
            self.last_result = await self._run_cycle()
        except ImessageSyncError as e:
            logger.error("Sync cycle failed: %s", e)
            return TickOutcome.FAILED
        except Exception:
            logger.exception("Sync cycle crashed")
            return TickOutcome.FAILED
        finally:
            self._running = False
        return TickOutcome.COMPLETED

    async def run_once(self) -> TickOutcome:
        return await self.tick()

    async def run_forever(self) -> None:
        """Tick immediately, then every interval, until ``request_shutdown``.

        On shutdown an in-flight cycle is allowed to finish so its watermark
        commit isn't cut short.
        """
        logger.info(
            "Starting scheduled sync every %.0f minute(s)", self._interval.total_seconds() / 60
        )
        while not self._stop.is_set():
            if self._running:
                logger.warning("Sync already in progress, skipping this tick")
            else:
                self._inflight = asyncio.create_task(self.tick())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval.total_seconds())
            except TimeoutError:
                pass

        if self._inflight is not None and not self._inflight.done():
            logger.info("Waiting for the running sync to finish...")
            await self._inflight
        logger.info("Scheduler stopped")

    def request_shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()
