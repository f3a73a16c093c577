"""
Hot/new ranking over cache snapshots.

Everything here is a pure function of its arguments: same entries, same
filter and same ``now`` always give the same ordered lists. Ties are
broken by recency and then by ``ref_id`` so ordering never depends on
input order.

Scoring:
    engagement = reply_count * w_reply + like_count * w_like + view_count * w_view
    recency    = max(0.5, 1 - age_hours / (period_days * 48))
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from forumwatch.cache.schemas import CacheEntry
from forumwatch.ingestion.schemas import Topic


# ── Weights ──────────────────────────────────────────────


@dataclass(frozen=True)
class ScoreWeights:
    """Per-signal multipliers for engagement_score()."""

    reply: float = 10.0
    like: float = 3.0
    view: float = 1 / 500


HOT_WEIGHTS = ScoreWeights()
NEW_CONVERSATION_WEIGHTS = ScoreWeights(reply=1.0, like=1.0, view=0.0)
DELEGATE_WEIGHTS = ScoreWeights(reply=1.0, like=0.0, view=1 / 100)

MIN_RECENCY_MULTIPLIER = 0.5


def engagement_score(topic: Topic, weights: ScoreWeights = HOT_WEIGHTS) -> float:
    return (
        topic.reply_count * weights.reply
        + topic.like_count * weights.like
        + topic.view_count * weights.view
    )


def recency_multiplier(last_activity: datetime, now: datetime, period_days: float) -> float:
    """Linear decay to a floor of 0.5, reached after two periods of inactivity."""
    age_hours = max(0.0, (now - last_activity).total_seconds() / 3600)
    return max(MIN_RECENCY_MULTIPLIER, 1 - age_hours / (period_days * 48))


# ── Schemas ──────────────────────────────────────────────


@dataclass(frozen=True)
class RankingFilter:
    """Which topics are eligible for ranking.

    Attributes:
        source_ids: Restrict to these sources (None means every source).
        window_days: Drop topics inactive for longer than this.
        hot_limit: Size of the hot list.
        fresh_limit: Size of the fresh list.
    """

    source_ids: frozenset[str] | None = None
    window_days: float = 7.0
    hot_limit: int = 5
    fresh_limit: int = 5


@dataclass(frozen=True)
class RankedTopic:
    topic: Topic
    score: float


@dataclass(frozen=True)
class HotAndNew:
    hot: tuple[RankedTopic, ...]
    fresh: tuple[RankedTopic, ...]
    source_count: int = 0


# ── Ranking ──────────────────────────────────────────────


def eligible_topics(
    entries: Iterable[CacheEntry],
    ranking_filter: RankingFilter,
    now: datetime,
) -> tuple[list[Topic], int]:
    """
    Topics that may be ranked, plus the number of sources that supplied them.

    Defunct entries are skipped. Entries with a recent error still
    contribute their last good topics. Pinned topics and topics inactive
    beyond the window are excluded.
    """
    cutoff = now - timedelta(days=ranking_filter.window_days)
    topics: list[Topic] = []
    sources = 0
    for entry in entries:
        if entry.is_defunct or not entry.topics:
            continue
        if ranking_filter.source_ids is not None and entry.source_id not in ranking_filter.source_ids:
            continue
        sources += 1
        topics.extend(
            t for t in entry.topics
            if not t.pinned and t.last_activity_at >= cutoff
        )
    return topics, sources


def rank_hot_and_new(
    entries: Iterable[CacheEntry],
    ranking_filter: RankingFilter,
    now: datetime,
) -> HotAndNew:
    """
    Top topics by engagement, then the newest of the rest.

    Hot is ordered by hot score descending, then more recent activity,
    then ref_id. Fresh holds topics not in hot, newest ``created_at`` first.
    """
    topics, source_count = eligible_topics(entries, ranking_filter, now)

    scored = [RankedTopic(topic=t, score=engagement_score(t)) for t in topics]
    scored.sort(
        key=lambda r: (-r.score, -r.topic.last_activity_at.timestamp(), r.topic.ref_id)
    )
    hot = tuple(scored[: ranking_filter.hot_limit])

    hot_ids = {r.topic.ref_id for r in hot}
    rest = [r for r in scored if r.topic.ref_id not in hot_ids]
    rest.sort(key=lambda r: (-r.topic.created_at.timestamp(), r.topic.ref_id))
    fresh = tuple(rest[: ranking_filter.fresh_limit])

    return HotAndNew(hot=hot, fresh=fresh, source_count=source_count)
