"""
Bounded worker pool for fire-and-forget refresh triggers.

Admin endpoints enqueue refresh jobs here instead of spawning detached
tasks, so background work is bounded (queue size, worker count) and owned
by something that can cancel it on shutdown. Jobs still go through the
orchestrator, so single-flight and the global concurrency cap apply.
"""

import asyncio
from collections.abc import Iterable

import structlog

from forumwatch.refresh.config import RefreshConfig
from forumwatch.refresh.orchestrator import RefreshOrchestrator

logger = structlog.get_logger(__name__)


class RefreshWorkerPool:
    """
    N workers draining a bounded queue of refresh jobs.

    Usage:
        pool = RefreshWorkerPool(orchestrator)
        pool.start()
        accepted = pool.submit(["uniswap", "aave"])
        ...
        await pool.stop()
    """

    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        config: RefreshConfig | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config or orchestrator.config
        self._queue: asyncio.Queue[tuple[str, ...]] = asyncio.Queue(
            maxsize=self._config.queue_size
        )
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the workers. Must be called from a running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(i), name=f"refresh_worker_{i}")
            for i in range(self._config.worker_count)
        ]
        logger.info("Refresh worker pool started", workers=len(self._workers))

    def submit(self, source_ids: Iterable[str]) -> bool:
        """
        Enqueue a refresh job without waiting for it.

        Returns:
            False if the queue is full and the job was dropped.
        """
        job = tuple(source_ids)
        if not job:
            return True
        if not self._workers:
            self.start()
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("Refresh queue full, dropping job", sources=len(job))
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers; queued jobs are dropped."""
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Refresh worker pool stopped")

    async def _work(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                report = await self._orchestrator.refresh_now(
                    job, timeout=self._config.request_timeout_seconds
                )
                logger.info(
                    "Background refresh finished",
                    worker=index,
                    succeeded=len(report.succeeded),
                    failed=len(report.failed),
                    skipped=len(report.skipped),
                )
            except Exception as e:
                logger.error("Background refresh failed", worker=index, error=str(e), exc_info=True)
            finally:
                self._queue.task_done()
