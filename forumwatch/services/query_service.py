"""
Query façade - the read API for downstream consumers.

Every read is served from the cache store and never waits on an upstream.
For a known source the façade always returns something: the last good
topics plus the error flag when the latest refresh failed, or an empty
entry when nothing has been fetched yet.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from forumwatch.cache.schemas import CacheEntry, ErrorInfo
from forumwatch.cache.store import CacheStore
from forumwatch.ingestion.schemas import Topic
from forumwatch.ranking.config import RankingConfig
from forumwatch.ranking.digest import DigestPeriod, DigestSections, build_digest_sections
from forumwatch.ranking.scoring import HotAndNew, RankingFilter, rank_hot_and_new
from forumwatch.refresh.orchestrator import RefreshOrchestrator
from forumwatch.refresh.worker_pool import RefreshWorkerPool
from forumwatch.sources.registry import SourceRegistry
from forumwatch.sources.schemas import SourceKind

logger = structlog.get_logger(__name__)

ALL_CATEGORIES = "all"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheStats:
    """Operational summary of the cache."""

    source_count: int
    fresh_count: int
    error_count: int
    oldest_fetched_at: datetime | None
    defunct_count: int = 0
    topic_count: int = 0
    in_flight: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_count": self.source_count,
            "fresh_count": self.fresh_count,
            "error_count": self.error_count,
            "oldest_fetched_at": self.oldest_fetched_at.isoformat() if self.oldest_fetched_at else None,
            "defunct_count": self.defunct_count,
            "topic_count": self.topic_count,
            "in_flight": self.in_flight,
        }


@dataclass(frozen=True)
class SourceHealth:
    source_id: str
    display_name: str
    category_tag: str
    status: str  # ok, error, defunct, not_cached
    topic_count: int
    fetched_at: datetime | None
    last_error: ErrorInfo | None


@dataclass(frozen=True)
class Briefs:
    category: str
    ranking: HotAndNew


@dataclass(frozen=True)
class UpstreamSearch:
    """Matches from an upstream search and the sources that could not answer."""

    topics: list[Topic]
    source_ids: list[str]
    failed: dict[str, ErrorInfo] = field(default_factory=dict)


def _matches(topic: Topic, terms: list[str]) -> bool:
    haystack = " ".join([topic.title, topic.excerpt or "", *topic.tags]).lower()
    return all(term in haystack for term in terms)


class QueryService:
    """
    Cache-only read API plus the fire-and-forget refresh trigger.

    Usage:
        service = QueryService(registry, store, orchestrator, pool)
        entries = service.get_cached(["uniswap", "aave"])
        briefs = service.get_briefs("crypto")
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: CacheStore,
        orchestrator: RefreshOrchestrator,
        worker_pool: RefreshWorkerPool,
        ranking_config: RankingConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._registry = registry
        self._store = store
        self._orchestrator = orchestrator
        self._pool = worker_pool
        self._ranking = ranking_config or RankingConfig()
        self._clock = clock

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def orchestrator(self) -> RefreshOrchestrator:
        return self._orchestrator

    def get_cached(self, source_ids: Iterable[str]) -> list[CacheEntry]:
        """One entry per requested id, in request order."""
        return self._store.get_many(source_ids)

    def get_all(self) -> list[CacheEntry]:
        return self._store.snapshot_all()

    def get_topics(self, source_ids: Iterable[str] | None = None) -> list[Topic]:
        """Flattened topics for the given sources (all cached sources if None)."""
        entries = self.get_all() if source_ids is None else self.get_cached(source_ids)
        return [t for e in entries if not e.is_defunct for t in e.topics]

    def trigger_refresh(self, source_ids: Iterable[str]) -> None:
        """Queue a background refresh; returns without waiting."""
        ids = list(source_ids)
        if not self._pool.submit(ids):
            logger.warning("Refresh trigger dropped, worker queue full", sources=ids)

    def clear_defunct(self, source_id: str) -> bool:
        """Admin action: let a defunct source be refreshed again."""
        return self._store.clear_defunct(source_id)

    def get_stats(self, now: datetime | None = None) -> CacheStats:
        now = now or self._clock()
        entries = self.get_all()
        fresh = 0
        for entry in entries:
            source = self._registry.get(entry.source_id)
            ttl = self._orchestrator.config.ttl_for(source.tier if source else 2)
            if entry.is_fresh(now, ttl):
                fresh += 1

        fetched = [e.fetched_at for e in entries if e.fetched_at is not None]
        return CacheStats(
            source_count=len(entries),
            fresh_count=fresh,
            error_count=sum(1 for e in entries if e.has_error),
            oldest_fetched_at=min(fetched) if fetched else None,
            defunct_count=sum(1 for e in entries if e.is_defunct),
            topic_count=sum(len(e.topics) for e in entries),
            in_flight=self._orchestrator.in_flight,
        )

    def get_briefs(self, category: str = ALL_CATEGORIES, now: datetime | None = None) -> Briefs:
        """Top hot and newest topics, optionally for one category."""
        now = now or self._clock()
        source_ids = None
        if category != ALL_CATEGORIES:
            source_ids = frozenset(s.id for s in self._registry.by_category(category))

        ranking_filter = RankingFilter(
            source_ids=source_ids,
            window_days=self._ranking.activity_window_days,
            hot_limit=self._ranking.hot_limit,
            fresh_limit=self._ranking.fresh_limit,
        )
        return Briefs(category=category, ranking=rank_hot_and_new(self.get_all(), ranking_filter, now))

    def get_digest(
        self,
        source_ids: Iterable[str] | None = None,
        period: DigestPeriod = "weekly",
        keywords: Iterable[str] = (),
        now: datetime | None = None,
    ) -> DigestSections:
        return build_digest_sections(
            self.get_topics(source_ids),
            now or self._clock(),
            period=period,
            keywords=keywords,
            config=self._ranking,
        )

    def search(
        self,
        query: str,
        source_ids: Iterable[str] | None = None,
        limit: int = 20,
    ) -> list[Topic]:
        """
        Cached topics whose title, excerpt or tags contain every term of ``query``.

        Most-liked first, then most recently active. Never waits on an upstream.
        """
        terms = query.lower().split()
        if not terms:
            return []
        matches = [t for t in self.get_topics(source_ids) if _matches(t, terms)]
        matches.sort(key=lambda t: (t.like_count, t.last_activity_at), reverse=True)
        return matches[:limit]

    async def search_upstream(
        self,
        query: str,
        source_ids: Iterable[str] | None = None,
        limit: int = 20,
    ) -> UpstreamSearch:
        """
        Ask the upstreams themselves, for topics the cache has not seen.

        Only Discourse sources can be searched. Without ``source_ids`` the
        enabled tier 1 forums are used. At most ``search_max_sources`` are
        asked, each through the outbound limiter; failures are reported per
        source.
        """
        config = self._orchestrator.config
        if source_ids is None:
            candidates = [s for s in self._registry.enabled() if s.tier == 1]
        else:
            candidates, _ = self._registry.resolve(dict.fromkeys(source_ids))
        searchable = [s for s in candidates if s.source_kind == SourceKind.DISCOURSE]
        selected = searchable[: config.search_max_sources]

        topics, failed = await self._orchestrator.search_upstream(
            selected, query, timeout=config.search_timeout_seconds
        )
        topics.sort(key=lambda t: t.like_count, reverse=True)
        if failed:
            logger.info("Upstream search had failures", query=query, failed=sorted(failed))
        return UpstreamSearch(
            topics=topics[:limit],
            source_ids=[s.id for s in selected],
            failed=failed,
        )

    def get_source_health(self) -> list[SourceHealth]:
        """Health of every registered source, cached or not."""
        health = []
        for source in self._registry:
            entry = self._store.get(source.id)
            health.append(
                SourceHealth(
                    source_id=source.id,
                    display_name=source.display_name,
                    category_tag=source.category_tag,
                    status=entry.state,
                    topic_count=len(entry.topics),
                    fetched_at=entry.fetched_at,
                    last_error=entry.last_error,
                )
            )
        return health
