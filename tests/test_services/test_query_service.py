"""Tests for the cache-only query façade."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from forumwatch.cache.schemas import ErrorInfo
from forumwatch.ingestion.errors import FetchErrorKind
from forumwatch.ranking.config import RankingConfig
from forumwatch.refresh.worker_pool import RefreshWorkerPool
from forumwatch.services.query_service import QueryService


@pytest.fixture
def pool():
    pool = MagicMock(spec=RefreshWorkerPool)
    pool.submit.return_value = True
    return pool


@pytest.fixture
def service(sample_registry, store, orchestrator, pool, clock):
    return QueryService(
        sample_registry,
        store,
        orchestrator,
        pool,
        ranking_config=RankingConfig(hot_limit=2, fresh_limit=2),
        clock=clock,
    )


def _error(clock, kind=FetchErrorKind.TRANSIENT, message="timeout"):
    return ErrorInfo(kind=kind, message=message, occurred_at=clock())


class TestQueryServiceReads:
    """Tests for cache reads."""

    def test_get_cached_in_request_order(self, service, store, make_topic):
        store.commit("aave", [make_topic("aave")])

        entries = service.get_cached(["unknown", "aave"])

        assert [e.source_id for e in entries] == ["unknown", "aave"]
        assert entries[0].state == "not_cached"
        assert entries[0].topics == ()
        assert len(entries[1].topics) == 1

    def test_failed_refresh_keeps_last_good_topics(self, service, store, make_topic, clock):
        store.commit("uniswap", [make_topic()])
        store.commit_error("uniswap", _error(clock))

        entry = service.get_cached(["uniswap"])[0]

        assert entry.state == "error"
        assert entry.last_error.message == "timeout"
        assert len(entry.topics) == 1

    def test_get_topics_skips_defunct(self, service, store, make_topic, clock):
        store.commit("uniswap", [make_topic("uniswap")])
        store.commit("aave", [make_topic("aave")])
        for _ in range(2):
            store.commit_error("aave", _error(clock, FetchErrorKind.DEFUNCT, "gone"), is_defunct=True)

        topics = service.get_topics()

        assert [t.source_id for t in topics] == ["uniswap"]

    def test_get_topics_for_ids(self, service, store, make_topic):
        store.commit("uniswap", [make_topic("uniswap")])
        store.commit("aave", [make_topic("aave")])

        assert [t.source_id for t in service.get_topics(["aave"])] == ["aave"]


class TestQueryServiceStats:
    """Tests for get_stats and get_source_health."""

    def test_stats(self, service, store, make_topic, clock):
        start = clock()
        store.commit("aave", [make_topic("aave", "1"), make_topic("aave", "2")])
        clock.advance(400)  # past the tier 1 TTL
        store.commit("uniswap", [make_topic()])
        store.commit_error("rust", _error(clock))

        stats = service.get_stats()

        assert stats.source_count == 3
        assert stats.fresh_count == 1
        assert stats.error_count == 1
        assert stats.defunct_count == 0
        assert stats.topic_count == 3
        assert stats.oldest_fetched_at == start
        assert stats.in_flight == 0
        assert stats.to_dict()["oldest_fetched_at"] == start.isoformat()

    def test_stats_empty_cache(self, service):
        stats = service.get_stats()

        assert stats.source_count == 0
        assert stats.oldest_fetched_at is None

    def test_source_health_lists_every_registered_source(self, service, store, make_topic, clock):
        store.commit("uniswap", [make_topic()])
        store.commit_error("aave", _error(clock))

        health = {h.source_id: h for h in service.get_source_health()}

        assert set(health) == {"uniswap", "aave", "rust", "retired"}
        assert health["uniswap"].status == "ok"
        assert health["uniswap"].topic_count == 1
        assert health["aave"].status == "error"
        assert health["rust"].status == "not_cached"
        assert health["rust"].fetched_at is None


class TestQueryServiceRanking:
    """Tests for briefs and digests."""

    def test_briefs_for_category(self, service, store, make_topic):
        store.commit("uniswap", [make_topic("uniswap", "1", reply_count=5)])
        store.commit("rust", [make_topic("rust", "1", reply_count=50)])

        briefs = service.get_briefs("crypto")

        assert briefs.category == "crypto"
        assert [r.topic.source_id for r in briefs.ranking.hot] == ["uniswap"]
        assert briefs.ranking.source_count == 1

    def test_briefs_all_categories(self, service, store, make_topic):
        store.commit("uniswap", [make_topic("uniswap", str(i), reply_count=i) for i in range(3)])
        store.commit("rust", [make_topic("rust", "1", reply_count=50)])

        briefs = service.get_briefs()

        assert [r.topic.ref_id for r in briefs.ranking.hot] == ["rust:1", "uniswap:2"]
        assert len(briefs.ranking.fresh) == 2
        assert briefs.ranking.source_count == 2

    def test_briefs_use_cached_topics_of_erroring_source(self, service, store, make_topic, clock):
        store.commit("aave", [make_topic("aave")])
        store.commit_error("aave", _error(clock))

        briefs = service.get_briefs("crypto")

        assert [r.topic.source_id for r in briefs.ranking.hot] == ["aave"]

    def test_digest_for_sources(self, service, store, make_topic, clock):
        store.commit("uniswap", [make_topic("uniswap", title="Fee switch", created_at=clock() - timedelta(hours=3))])
        store.commit("aave", [make_topic("aave", title="Risk parameters")])

        digest = service.get_digest(["uniswap"], period="daily", keywords=["fee"])

        assert [i.topic.source_id for i in digest.keyword_matches] == ["uniswap"]
        assert digest.new_conversations == []
        assert digest.community_count == 1


class TestQueryServiceActions:
    """Tests for refresh triggers and admin actions."""

    def test_trigger_refresh_submits_to_pool(self, service, pool):
        service.trigger_refresh(["uniswap", "aave"])

        pool.submit.assert_called_once_with(["uniswap", "aave"])

    def test_trigger_refresh_when_queue_full(self, service, pool):
        """A dropped trigger is not an error for the caller."""
        pool.submit.return_value = False

        service.trigger_refresh(["uniswap"])

        pool.submit.assert_called_once()

    def test_clear_defunct(self, service, store, clock):
        for _ in range(2):
            store.commit_error("aave", _error(clock, FetchErrorKind.DEFUNCT, "gone"), is_defunct=True)

        assert service.clear_defunct("aave") is True
        assert store.get("aave").is_defunct is False
        assert service.clear_defunct("aave") is False


class TestQueryServiceSearch:
    """Tests for cached and upstream search."""

    def test_every_term_must_match(self, service, store, make_topic):
        store.commit("uniswap", [
            make_topic("uniswap", "1", title="Fee switch temperature check"),
            make_topic("uniswap", "2", title="Fee tier for stable pairs"),
            make_topic("uniswap", "3", title="Grants program", tags=["fee-switch"]),
        ])

        matches = service.search("FEE switch")

        assert sorted(t.ref_id for t in matches) == ["uniswap:1", "uniswap:3"]

    def test_matches_excerpt_and_orders_by_likes(self, service, store, make_topic):
        store.commit("uniswap", [
            make_topic("uniswap", "1", title="Budget", excerpt="treasury diversification", like_count=2)
        ])
        store.commit("aave", [make_topic("aave", "1", title="Treasury report", like_count=9)])

        matches = service.search("treasury")

        assert [t.ref_id for t in matches] == ["aave:1", "uniswap:1"]

    def test_limit_and_source_filter(self, service, store, make_topic):
        store.commit("uniswap", [make_topic("uniswap", str(i), title=f"Vote {i}") for i in range(5)])
        store.commit("aave", [make_topic("aave", "1", title="Vote on risk params")])

        assert len(service.search("vote", limit=3)) == 3
        assert [t.source_id for t in service.search("vote", ["aave"])] == ["aave"]

    def test_blank_query_matches_nothing(self, service, store, make_topic):
        store.commit("uniswap", [make_topic()])

        assert service.search("   ") == []

    @pytest.mark.asyncio
    async def test_upstream_defaults_to_tier_one_discourse(self, service, fake_fetcher, make_topic):
        fake_fetcher.search_results = {
            "uniswap": [make_topic("uniswap", "1", like_count=1)],
            "aave": [make_topic("aave", "7", like_count=5)],
        }

        results = await service.search_upstream("fee")

        assert results.source_ids == ["uniswap", "aave"]
        assert [t.ref_id for t in results.topics] == ["aave:7", "uniswap:1"]
        assert results.failed == {}

    @pytest.mark.asyncio
    async def test_upstream_does_not_touch_the_cache(self, service, fake_fetcher, store, make_topic):
        fake_fetcher.search_results = {"rust": [make_topic("rust", "1")]}

        results = await service.search_upstream("async", ["rust", "nope"])

        assert results.source_ids == ["rust"]
        assert len(results.topics) == 1
        assert store.get("rust").state == "not_cached"
