"""
Request and response models for the forumwatch API.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field

from forumwatch.cache.schemas import CacheEntry, ErrorInfo
from forumwatch.ingestion.schemas import Topic
from forumwatch.ranking.digest import DigestItem
from forumwatch.ranking.scoring import RankedTopic
from forumwatch.services.query_service import CacheStats, SourceHealth


class ErrorInfoResponse(BaseModel):
    """Last fetch error recorded for a source."""

    kind: str
    message: str
    status_code: int | None = None
    occurred_at: dt.datetime

    @classmethod
    def from_error(cls, error: ErrorInfo | None) -> "ErrorInfoResponse | None":
        if error is None:
            return None
        return cls(
            kind=error.kind.value,
            message=error.message,
            status_code=error.status_code,
            occurred_at=error.occurred_at,
        )


class RankedTopicResponse(BaseModel):
    topic: Topic
    score: float

    @classmethod
    def from_ranked(cls, ranked: RankedTopic) -> "RankedTopicResponse":
        return cls(topic=ranked.topic, score=round(ranked.score, 3))


class BriefsResponse(BaseModel):
    """Top 5 hot and 5 newest topics across cached sources."""

    category: str
    hot: list[RankedTopicResponse]
    fresh: list[RankedTopicResponse]
    cached_source_count: int = Field(..., description="Sources that contributed topics")


class SourceTopicsResponse(BaseModel):
    """Cached topics for one source, with its error flag."""

    source_id: str
    state: str
    fetched_at: dt.datetime | None = None
    is_defunct: bool = False
    last_error: ErrorInfoResponse | None = None
    topics: list[Topic]

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "SourceTopicsResponse":
        return cls(
            source_id=entry.source_id,
            state=entry.state,
            fetched_at=entry.fetched_at,
            is_defunct=entry.is_defunct,
            last_error=ErrorInfoResponse.from_error(entry.last_error),
            topics=list(entry.topics),
        )


class DiscussionsResponse(BaseModel):
    sources: list[SourceTopicsResponse]
    topic_count: int
    unknown_source_ids: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Topics matching a query, from the cache or from the forums themselves."""

    query: str
    upstream: bool
    topics: list[Topic]
    searched_source_ids: list[str] = Field(default_factory=list)
    failed: dict[str, ErrorInfoResponse] = Field(default_factory=dict)
    unknown_source_ids: list[str] = Field(default_factory=list)


class DigestItemResponse(BaseModel):
    topic: Topic
    score: float
    matched_keywords: list[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: DigestItem) -> "DigestItemResponse":
        return cls(
            topic=item.topic,
            score=round(item.score, 3),
            matched_keywords=list(item.matched_keywords),
        )


class DigestResponse(BaseModel):
    period: Literal["daily", "weekly"]
    start: dt.datetime
    end: dt.datetime
    summary: str
    keyword_matches: list[DigestItemResponse]
    new_conversations: list[DigestItemResponse]
    trending: list[DigestItemResponse]
    delegate_corner: list[DigestItemResponse]


class CacheStatsResponse(BaseModel):
    source_count: int
    fresh_count: int
    error_count: int
    oldest_fetched_at: dt.datetime | None = None
    defunct_count: int = 0
    topic_count: int = 0
    in_flight: int = 0

    @classmethod
    def from_stats(cls, stats: CacheStats) -> "CacheStatsResponse":
        return cls(
            source_count=stats.source_count,
            fresh_count=stats.fresh_count,
            error_count=stats.error_count,
            oldest_fetched_at=stats.oldest_fetched_at,
            defunct_count=stats.defunct_count,
            topic_count=stats.topic_count,
            in_flight=stats.in_flight,
        )


class SourceHealthResponse(BaseModel):
    source_id: str
    display_name: str
    category_tag: str
    status: Literal["ok", "error", "defunct", "not_cached"]
    topic_count: int
    fetched_at: dt.datetime | None = None
    last_error: ErrorInfoResponse | None = None

    @classmethod
    def from_health(cls, health: SourceHealth) -> "SourceHealthResponse":
        return cls(
            source_id=health.source_id,
            display_name=health.display_name,
            category_tag=health.category_tag,
            status=health.status,
            topic_count=health.topic_count,
            fetched_at=health.fetched_at,
            last_error=ErrorInfoResponse.from_error(health.last_error),
        )


class CacheResponse(BaseModel):
    stats: CacheStatsResponse
    sources: list[SourceHealthResponse] | None = None


class RefreshRequest(BaseModel):
    """Request model for a forced refresh."""

    source_ids: list[str] = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Registry ids to refresh",
    )
    wait: bool = Field(
        default=False,
        description="Wait for the refresh to finish instead of queueing it",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        le=300,
        description="Upper bound on waiting when wait=true",
    )


class RefreshReportResponse(BaseModel):
    succeeded: list[str]
    failed: dict[str, ErrorInfoResponse]
    skipped: dict[str, str]
    topic_count: int


class RefreshResponse(BaseModel):
    queued: bool
    report: RefreshReportResponse | None = None


class ClearDefunctResponse(BaseModel):
    source_id: str
    cleared: bool


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    source_count: int
    cached_source_count: int
    error_count: int
    defunct_count: int
    in_flight: int
    oldest_fetched_at: dt.datetime | None = None
