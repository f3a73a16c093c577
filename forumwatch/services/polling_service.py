"""
Polling service - keeps the cache warm.

Runs one refresh cycle every ``poll_interval_seconds``. Individual source
failures are normal and end up in the cache; only an unexpected error in
the cycle itself triggers exponential backoff.
"""

import asyncio
import time

import structlog

from forumwatch.config.settings import get_settings
from forumwatch.refresh.backoff import CycleBackoff
from forumwatch.refresh.orchestrator import RefreshOrchestrator

logger = structlog.get_logger(__name__)


class PollingService:
    """
    Periodic refresh loop.

    Usage:
        service = PollingService(orchestrator)
        await service.start()  # Runs until stop()
    """

    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        poll_interval: float | None = None,
        refresh_on_startup: bool | None = None,
    ):
        settings = get_settings()
        config = orchestrator.config

        self._orchestrator = orchestrator
        self._poll_interval = poll_interval or settings.poll_interval_seconds
        self._refresh_on_startup = (
            settings.refresh_on_startup if refresh_on_startup is None else refresh_on_startup
        )
        self._backoff = CycleBackoff(
            base_delay=config.backoff_base_delay,
            max_delay=config.backoff_max_delay,
        )
        self._running = False
        self._stop_event = asyncio.Event()
        self._cycles = 0

        logger.info("Polling service initialized", poll_interval=self._poll_interval)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        return self._cycles

    async def start(self) -> None:
        """Run the loop until stop() is called."""
        self._running = True
        self._stop_event.clear()
        logger.info("Starting polling service")

        try:
            delay = 0.0 if self._refresh_on_startup else self._poll_interval
            while self._running:
                if await self._wait(delay):
                    break
                delay = await self.run_once()
        except asyncio.CancelledError:
            logger.info("Polling service cancelled")
            raise
        finally:
            self._running = False
            logger.info("Polling service stopped", cycles=self._cycles)

    async def run_once(self) -> float:
        """Run one cycle; return how long to wait before the next one."""
        start = time.monotonic()
        try:
            report = await self._orchestrator.refresh_due_sources()
        except Exception as e:
            delay = self._backoff.failed()
            logger.error(
                "Refresh cycle failed",
                error=str(e),
                failures=self._backoff.failures,
                retry_in=round(delay, 1),
                exc_info=True,
            )
            return delay

        self._backoff.succeeded()
        self._cycles += 1
        elapsed = time.monotonic() - start
        logger.debug(
            "Refresh cycle complete",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            duration_s=round(elapsed, 2),
        )
        return max(0.0, self._poll_interval - elapsed)

    async def stop(self) -> None:
        logger.info("Stopping polling service")
        self._running = False
        self._stop_event.set()

    async def _wait(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds; True if stop() was called meanwhile."""
        if delay <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
