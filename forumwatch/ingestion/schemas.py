"""
Canonical topic schema for the forumwatch cache.

All source adapters MUST output this exact structure. The cache, the ranking
layer and every downstream consumer depend on these field names. ``ref_id``
is the correlation key for bookmarks and read state held by external
collaborators, so it must stay stable across refreshes.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def make_ref_id(source_id: str, external_id: str) -> str:
    """Composite key that is unique across all sources."""
    return f"{source_id}:{external_id}"


class Topic(BaseModel):
    """A normalized discussion unit from any upstream."""

    model_config = ConfigDict(frozen=True)

    # Identity
    source_id: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1, description="Upstream-native id")
    ref_id: str = Field(..., description="Stable key: {source_id}:{external_id}")
    title: str = Field(..., min_length=1)
    permalink: str

    tags: frozenset[str] = Field(default_factory=frozenset)

    # Engagement
    reply_count: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    engagement_score: float | None = Field(
        default=None,
        description="Native score for vote-based systems (Snapshot scores, forum karma)",
    )

    # Timestamps
    created_at: datetime
    last_activity_at: datetime

    # State
    pinned: bool = False
    closed: bool = False
    archived: bool = False

    excerpt: str | None = None
    author_name: str | None = None

    @field_validator("created_at", "last_activity_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are treated as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return frozenset()
        return frozenset(str(t) for t in v if t)
