"""
Refresh orchestrator.

Decides which sources to fetch, runs the fetches with bounded fan-out and
commits each result into the cache store. It is the boundary for fetch
errors: nothing a single source does can fail a batch.

Concurrency model:
    - One asyncio task per source refresh.
    - Single-flight per source: a request for a source that is already
      being refreshed attaches to the running task instead of starting a
      second upstream call.
    - A global semaphore caps concurrent upstream HTTP attempts. The
      Fetcher holds a slot only while an attempt is on the wire, never
      while it waits on the outbound limiter or backs off.
    - Callers wait through ``asyncio.shield``, so a caller timing out does
      not cancel work other callers are waiting on. A shared task runs
      until the latest deadline among its waiters (unbounded once any
      waiter has none), and is cancelled only when its last waiter gives up.
    - Local outbound throttling is reported to callers but never written
      to the cache entry.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from forumwatch.cache.schemas import ErrorInfo
from forumwatch.cache.store import CacheStore
from forumwatch.ingestion.errors import (
    DefunctSourceError,
    FetchError,
    FetchErrorKind,
    RateLimitedError,
)
from forumwatch.ingestion.fetcher import Fetcher
from forumwatch.ingestion.schemas import Topic
from forumwatch.observability.metrics import MetricsCollector, get_metrics
from forumwatch.refresh.config import RefreshConfig
from forumwatch.sources.registry import SourceRegistry
from forumwatch.sources.schemas import SourceDescriptor

logger = logging.getLogger(__name__)

SKIP_UNKNOWN = "unknown"
SKIP_DEFUNCT = "defunct"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SourceOutcome:
    """Result of refreshing one source."""

    source_id: str
    ok: bool
    topic_count: int = 0
    error: ErrorInfo | None = None


@dataclass
class RefreshReport:
    """Per-batch summary: every requested source lands in exactly one bucket."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, ErrorInfo] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    topic_count: int = 0

    def add(self, outcome: SourceOutcome) -> None:
        if outcome.ok:
            self.succeeded.append(outcome.source_id)
            self.topic_count += outcome.topic_count
        elif outcome.error is not None:
            self.failed[outcome.source_id] = outcome.error

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": {sid: err.to_dict() for sid, err in self.failed.items()},
            "skipped": dict(self.skipped),
            "topic_count": self.topic_count,
        }


@dataclass
class _Flight:
    """One running refresh and the latest deadline among its waiters."""

    deadline: float | None
    task: asyncio.Task | None = None
    waiters: int = 0

    def extend(self, deadline: float | None) -> None:
        if self.deadline is not None:
            self.deadline = None if deadline is None else max(self.deadline, deadline)


class RefreshOrchestrator:
    """
    Schedules and runs source refreshes.

    Usage:
        orchestrator = RefreshOrchestrator(registry, store, fetcher)
        report = await orchestrator.refresh_due_sources()
        report = await orchestrator.refresh_now(["uniswap"], timeout=10)
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: CacheStore,
        fetcher: Fetcher,
        config: RefreshConfig | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = _utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._store = store
        self._fetcher = fetcher
        self._config = config or RefreshConfig()
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self._monotonic = monotonic
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
        self._flights: dict[str, _Flight] = {}

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def config(self) -> RefreshConfig:
        return self._config

    @property
    def in_flight(self) -> int:
        return len(self._flights)

    def is_in_flight(self, source_id: str) -> bool:
        return source_id in self._flights

    def refresh_due(self, now: datetime | None = None) -> list[SourceDescriptor]:
        """
        Sources that should be fetched now.

        Enabled, not defunct, not already in flight, and never fetched or
        fetched longer ago than their tier's TTL. Ordered by tier, then id.
        """
        now = now or self._clock()
        due = []
        for source in self._registry.enabled():
            if source.id in self._flights:
                continue
            entry = self._store.get(source.id)
            if entry.is_defunct:
                continue
            if entry.is_fresh(now, self._config.ttl_for(source.tier)):
                continue
            due.append(source)
        return sorted(due, key=lambda s: (s.tier, s.id))

    async def refresh_due_sources(self, now: datetime | None = None) -> RefreshReport:
        """Run one polling cycle over every due source."""
        start = time.perf_counter()
        due = self.refresh_due(now)
        report = await self._run(due, self._config.cycle_timeout_seconds, RefreshReport())

        self._metrics.refresh_cycle_latency.observe(time.perf_counter() - start)
        self._metrics.set_cache_state(self._store.state_counts())
        if due:
            logger.info(
                "Refresh cycle: %d due, %d succeeded, %d failed, %d topics in %.1fs",
                len(due),
                len(report.succeeded),
                len(report.failed),
                report.topic_count,
                time.perf_counter() - start,
            )
        return report

    async def refresh_now(
        self,
        source_ids: Iterable[str],
        timeout: float | None = None,
    ) -> RefreshReport:
        """
        Refresh the given sources regardless of TTL.

        Unknown and defunct ids are reported as skipped. Disabled sources
        are refreshed when asked for explicitly.
        """
        known, unknown = self._registry.resolve(dict.fromkeys(source_ids))
        report = RefreshReport()
        for source_id in unknown:
            report.skipped[source_id] = SKIP_UNKNOWN

        targets = []
        for source in known:
            if self._store.get(source.id).is_defunct:
                report.skipped[source.id] = SKIP_DEFUNCT
            else:
                targets.append(source)

        report = await self._run(targets, timeout, report)
        self._metrics.set_cache_state(self._store.state_counts())
        return report

    async def search_upstream(
        self,
        sources: Iterable[SourceDescriptor],
        query: str,
        timeout: float | None = None,
    ) -> tuple[list[Topic], dict[str, ErrorInfo]]:
        """
        Run one upstream search per source, sharing the fetch slots.

        Sources whose kind cannot search, or whose search fails, land in the
        returned error map; the rest contribute their matches. Nothing is
        written to the cache.
        """
        targets = list(sources)
        deadline = self._monotonic() + timeout if timeout is not None else None

        async def one(source: SourceDescriptor) -> list[Topic] | ErrorInfo:
            search = self._fetcher.search(
                source, query, deadline=lambda: deadline, slots=self._semaphore
            )
            try:
                if timeout is None:
                    return await search
                return await asyncio.wait_for(search, timeout)
            except FetchError as e:
                return ErrorInfo.from_exception(e, self._clock())
            except asyncio.TimeoutError:
                return ErrorInfo(
                    kind=FetchErrorKind.TRANSIENT,
                    message=f"{source.id}: search did not finish before the deadline",
                    occurred_at=self._clock(),
                )

        results = await asyncio.gather(*(one(s) for s in targets))

        topics: list[Topic] = []
        errors: dict[str, ErrorInfo] = {}
        for source, result in zip(targets, results):
            if isinstance(result, ErrorInfo):
                errors[source.id] = result
            else:
                topics.extend(result)
        return topics, errors

    async def _run(
        self,
        sources: list[SourceDescriptor],
        timeout: float | None,
        report: RefreshReport,
    ) -> RefreshReport:
        if not sources:
            return report
        deadline = self._monotonic() + timeout if timeout is not None else None
        outcomes = await asyncio.gather(*(self._await_refresh(s, deadline) for s in sources))
        for outcome in outcomes:
            report.add(outcome)
        return report

    async def _await_refresh(
        self,
        source: SourceDescriptor,
        deadline: float | None,
    ) -> SourceOutcome:
        """Start or join the single flight for ``source`` and wait for it."""
        flight = self._flights.get(source.id)
        if flight is None:
            flight = _Flight(deadline=deadline)
            flight.task = asyncio.create_task(
                self._execute(source, flight),
                name=f"refresh_{source.id}",
            )
            self._flights[source.id] = flight
            flight.task.add_done_callback(lambda _t, sid=source.id, f=flight: self._land(sid, f))
        else:
            flight.extend(deadline)
            self._metrics.single_flight_joins.inc()
            logger.debug("Joining in-flight refresh of %s", source.id)

        flight.waiters += 1
        try:
            if deadline is None:
                return await asyncio.shield(flight.task)
            remaining = max(0.0, deadline - self._monotonic())
            return await asyncio.wait_for(asyncio.shield(flight.task), remaining)
        except asyncio.TimeoutError:
            error = ErrorInfo(
                kind=FetchErrorKind.TRANSIENT,
                message=f"{source.id}: refresh did not finish before the deadline",
                occurred_at=self._clock(),
            )
            return SourceOutcome(source_id=source.id, ok=False, error=error)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info("No callers left waiting on %s, cancelling refresh", source.id)
                self._land(source.id, flight)
                flight.task.cancel()

    def _land(self, source_id: str, flight: _Flight) -> None:
        if self._flights.get(source_id) is flight:
            del self._flights[source_id]

    async def _execute(self, source: SourceDescriptor, flight: _Flight) -> SourceOutcome:
        """
        Fetch one source and commit the result. Never raises FetchError.

        A cancelled refresh commits nothing, so the entry (defunct strikes
        included) is exactly as it was before the refresh started.
        """
        ticket = self._store.begin(source.id)
        self._metrics.refreshes_in_flight.inc()
        try:
            topics = await self._fetcher.fetch(
                source,
                deadline=lambda: flight.deadline,
                slots=self._semaphore,
            )
        except RateLimitedError as e:
            logger.info("Refresh of %s held back by the outbound limit: %s", source.id, e)
            error = ErrorInfo.from_exception(e, self._clock())
            return SourceOutcome(source_id=source.id, ok=False, error=error)
        except FetchError as e:
            error = ErrorInfo.from_exception(e, self._clock())
            self._store.commit_error(
                source.id,
                error,
                is_defunct=isinstance(e, DefunctSourceError),
                sequence=ticket,
            )
            return SourceOutcome(source_id=source.id, ok=False, error=error)
        except Exception as e:
            logger.error("Unexpected error refreshing %s", source.id, exc_info=True)
            error = ErrorInfo.from_exception(e, self._clock())
            self._store.commit_error(source.id, error, sequence=ticket)
            return SourceOutcome(source_id=source.id, ok=False, error=error)
        finally:
            self._metrics.refreshes_in_flight.dec()

        entry = self._store.commit(source.id, topics, sequence=ticket)
        count = len(entry.topics) if entry is not None else len(topics)
        return SourceOutcome(source_id=source.id, ok=True, topic_count=count)
