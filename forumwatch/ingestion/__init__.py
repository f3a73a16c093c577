"""Upstream ingestion - adapters, topic schema, HTTP client and fetcher."""

from forumwatch.ingestion.errors import (
    AuthError,
    DefunctSourceError,
    FetchError,
    FetchErrorKind,
    RateLimitedError,
    TransientFetchError,
    UpstreamRateLimitError,
)
from forumwatch.ingestion.schemas import Topic, make_ref_id

__all__ = [
    "Topic",
    "make_ref_id",
    "FetchError",
    "FetchErrorKind",
    "TransientFetchError",
    "DefunctSourceError",
    "RateLimitedError",
    "UpstreamRateLimitError",
    "AuthError",
]
