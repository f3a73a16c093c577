"""Pytest fixtures for forumwatch tests."""

import asyncio
import contextlib
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import limits.storage.memory
import pytest
from prometheus_client import CollectorRegistry

from forumwatch.cache.config import CacheConfig
from forumwatch.cache.store import CacheStore
from forumwatch.config.settings import Settings, get_settings
from forumwatch.ingestion.schemas import Topic, make_ref_id
from forumwatch.observability.metrics import MetricsCollector
from forumwatch.refresh.config import RefreshConfig
from forumwatch.refresh.orchestrator import RefreshOrchestrator
from forumwatch.sources.registry import SourceRegistry
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """
    Manually advanced clock.

    Calling the instance returns the wall-clock datetime; ``time()`` is the
    same instant as epoch seconds (rate limiter clock) and ``monotonic()``
    counts seconds since the clock was created (deadline clock).
    """

    def __init__(self, start: datetime = NOW):
        self.current = start
        self.elapsed = 0.0

    def __call__(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def monotonic(self) -> float:
        return self.elapsed

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.elapsed += seconds


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Settings are cached per process; tests that patch env vars need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        github_token="ghp_test_token",
        metrics_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _limits_on_fake_clock(monkeypatch, clock):
    """Rate limiter storage expires windows by the fake clock, not wall time."""
    monkeypatch.setattr(
        limits.storage.memory,
        "time",
        SimpleNamespace(time=clock.time, monotonic=time.monotonic, sleep=time.sleep),
    )


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry) -> MetricsCollector:
    """Collector on a private registry so tests never clash on metric names."""
    return MetricsCollector(registry=metrics_registry)


@pytest.fixture
def make_topic():
    """Factory for Topics with sensible defaults."""

    def _make_topic(
        source_id: str = "uniswap",
        external_id: str = "1",
        title: str | None = None,
        created_at: datetime | None = None,
        last_activity_at: datetime | None = None,
        **kwargs,
    ) -> Topic:
        created_at = created_at or NOW - timedelta(hours=2)
        return Topic(
            source_id=source_id,
            external_id=external_id,
            ref_id=make_ref_id(source_id, external_id),
            title=title or f"Topic {external_id} on {source_id}",
            permalink=kwargs.pop("permalink", f"https://forum.example/t/{external_id}"),
            created_at=created_at,
            last_activity_at=last_activity_at or created_at,
            **kwargs,
        )

    return _make_topic


@pytest.fixture
def make_source():
    """Factory for Discourse SourceDescriptors with sensible defaults."""

    def _make_source(
        source_id: str = "uniswap",
        base_url: str | None = None,
        **kwargs,
    ) -> SourceDescriptor:
        return SourceDescriptor(
            id=source_id,
            display_name=kwargs.pop("display_name", source_id.title()),
            base_url=base_url or f"https://{source_id}.forum.example",
            source_kind=kwargs.pop("source_kind", SourceKind.DISCOURSE),
            category_tag=kwargs.pop("category_tag", "crypto"),
            **kwargs,
        )

    return _make_source


@pytest.fixture
def sample_registry(make_source) -> SourceRegistry:
    """Four Discourse forums across two categories and tiers, one disabled."""
    return SourceRegistry([
        make_source("uniswap", tier=1),
        make_source("aave", tier=1),
        make_source("rust", category_tag="oss", tier=2),
        make_source("retired", category_tag="oss", tier=3, enabled=False),
    ])


class FakeFetcher:
    """
    Stand-in for Fetcher.

    Each source returns its preset topics (empty by default) or raises its
    preset exception. While ``gate`` is set to an unset Event, every fetch
    blocks on it, which keeps refreshes in flight. A fetch holds one of the
    caller's ``slots`` for its whole run. Searches return ``search_results``.
    """

    def __init__(self):
        self.results: dict = {}
        self.search_results: dict = {}
        self.calls: list[str] = []
        self.deadlines: list = []
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    async def fetch(self, source, deadline=None, slots=None):
        self.calls.append(source.id)
        self.deadlines.append(deadline)
        async with slots if slots is not None else contextlib.nullcontext():
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                if self.gate is not None:
                    await self.gate.wait()
                await asyncio.sleep(self.delay)
                result = self.results.get(source.id, [])
                if isinstance(result, BaseException):
                    raise result
                return list(result)
            finally:
                self.active -= 1

    async def search(self, source, query, deadline=None, slots=None):
        self.calls.append(f"search:{source.id}:{query}")
        result = self.search_results.get(source.id, [])
        if isinstance(result, BaseException):
            raise result
        return list(result)


async def _settle(condition=None, rounds: int = 50) -> None:
    """Yield to the event loop until ``condition()`` holds (or for ``rounds`` iterations)."""
    for _ in range(rounds):
        if condition is not None and condition():
            return
        await asyncio.sleep(0)


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def store(clock) -> CacheStore:
    return CacheStore(CacheConfig(max_entries=100), clock=clock)


@pytest.fixture
def orchestrator(sample_registry, store, fake_fetcher, metrics, clock) -> RefreshOrchestrator:
    return RefreshOrchestrator(
        sample_registry,
        store,
        fake_fetcher,
        config=RefreshConfig(max_concurrency=8, worker_count=1, queue_size=10),
        metrics=metrics,
        clock=clock,
        monotonic=clock.monotonic,
    )


@pytest.fixture
def settle():
    """Awaitable helper: ``await settle(lambda: ...)`` lets background tasks run."""
    return _settle
