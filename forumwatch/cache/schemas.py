"""Immutable cache records."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from forumwatch.ingestion.errors import FetchError, FetchErrorKind
from forumwatch.ingestion.schemas import Topic

# Entry health states, also used as metric labels
STATE_OK = "ok"
STATE_ERROR = "error"
STATE_DEFUNCT = "defunct"
STATE_NOT_CACHED = "not_cached"


@dataclass(frozen=True)
class ErrorInfo:
    """The most recent failure recorded for a source."""

    kind: FetchErrorKind
    message: str
    occurred_at: datetime
    status_code: int | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, occurred_at: datetime) -> "ErrorInfo":
        if isinstance(exc, FetchError):
            return cls(
                kind=exc.kind,
                message=exc.message,
                occurred_at=occurred_at,
                status_code=exc.status_code,
            )
        return cls(
            kind=FetchErrorKind.UNEXPECTED,
            message=f"{type(exc).__name__}: {exc}",
            occurred_at=occurred_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class CacheEntry:
    """
    Point-in-time view of one source's cached data.

    Entries are never mutated. The store swaps a whole new entry on every
    commit, so a reader holding an entry always sees a consistent
    combination of topics, timestamps and error state.

    Attributes:
        source_id: Registry id of the source.
        topics: Last successful batch, in upstream order, unique by ref_id.
        fetched_at: Time of the last successful fetch (None if never).
        last_error: Most recent failure since the last success.
        is_defunct: Sticky once confirmed; cleared only by an admin.
        sequence: Ticket of the last applied commit.
        defunct_strikes: Consecutive defunct signals seen.
        last_attempt_at: Time of the last commit of either kind.
    """

    source_id: str
    topics: tuple[Topic, ...] = ()
    fetched_at: datetime | None = None
    last_error: ErrorInfo | None = None
    is_defunct: bool = False
    sequence: int = 0
    defunct_strikes: int = 0
    last_attempt_at: datetime | None = None

    @property
    def state(self) -> str:
        if self.is_defunct:
            return STATE_DEFUNCT
        if self.last_error is not None:
            return STATE_ERROR
        if self.fetched_at is None:
            return STATE_NOT_CACHED
        return STATE_OK

    @property
    def has_error(self) -> bool:
        return self.last_error is not None

    def age_seconds(self, now: datetime) -> float | None:
        if self.fetched_at is None:
            return None
        return (now - self.fetched_at).total_seconds()

    def is_fresh(self, now: datetime, ttl_seconds: float) -> bool:
        """Fetched within ``ttl_seconds`` of ``now``."""
        age = self.age_seconds(now)
        return age is not None and age < ttl_seconds

    def to_dict(self, include_topics: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source_id": self.source_id,
            "state": self.state,
            "topic_count": len(self.topics),
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "is_defunct": self.is_defunct,
        }
        if include_topics:
            data["topics"] = [t.model_dump(mode="json") for t in self.topics]
        return data
