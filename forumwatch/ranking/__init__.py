"""Pure ranking functions over cache snapshots: hot/new lists and digest sections."""

from forumwatch.ranking.config import RankingConfig
from forumwatch.ranking.digest import DigestItem, DigestSections, build_digest_sections
from forumwatch.ranking.scoring import (
    HotAndNew,
    RankedTopic,
    RankingFilter,
    ScoreWeights,
    engagement_score,
    rank_hot_and_new,
    recency_multiplier,
)

__all__ = [
    "DigestItem",
    "DigestSections",
    "HotAndNew",
    "RankedTopic",
    "RankingConfig",
    "RankingFilter",
    "ScoreWeights",
    "build_digest_sections",
    "engagement_score",
    "rank_hot_and_new",
    "recency_multiplier",
]
