"""
Base adapter interface and shared parsing helpers for source adapters.

Each source kind has exactly one adapter. An adapter knows how to build the
request for a source, how to find the list of items in the decoded JSON
payload, and how to turn one item into a ``Topic``. It never performs I/O:
the Fetcher owns throttling, retries, redirects and content-type checks, so
one upstream's schema change can only ever break its own adapter.

Subclasses must implement:
    - kind: SourceKind handled by the adapter
    - build_request(): method, URL and body for one poll
    - extract_items(): locate raw items, raising DefunctSourceError when the
      schema marker is missing
    - transform(): convert one raw item into a Topic
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from forumwatch.ingestion.errors import (
    AuthError,
    DefunctSourceError,
    FetchError,
    TransientFetchError,
)
from forumwatch.ingestion.http_client import TokenRotator, UpstreamHTTPError
from forumwatch.ingestion.schemas import Topic
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AdapterRequest:
    """Everything the Fetcher needs to issue one poll."""

    method: str
    url: str
    params: dict[str, Any] | None = None
    json_body: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    tokens: TokenRotator | None = None


@dataclass
class ParseResult:
    """Topics parsed from one payload plus the count of skipped items."""

    topics: list[Topic]
    malformed: int = 0


class SourceAdapter(ABC):
    """Abstract base class for per-kind source adapters."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        """Return the source kind this adapter handles."""
        ...

    @abstractmethod
    def build_request(self, source: SourceDescriptor) -> AdapterRequest:
        """Describe the HTTP call for one poll of ``source``.

        May raise AuthError when required credentials are missing.
        """
        ...

    @abstractmethod
    def extract_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        """Return the raw item list, or raise DefunctSourceError if the
        payload lacks this adapter's schema marker."""
        ...

    @abstractmethod
    def transform(self, source: SourceDescriptor, raw: dict[str, Any]) -> Topic | None:
        """Convert one raw item to a Topic, or None to drop it silently.

        Missing or wrongly typed fields surface as AttributeError, KeyError,
        TypeError or ValueError and are counted as malformed by parse().
        """
        ...

    def build_search_request(self, source: SourceDescriptor, query: str) -> AdapterRequest | None:
        """Describe an upstream search of ``source``, or None if the kind has none."""
        return None

    def extract_search_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        return self.extract_items(source, payload)

    def parse(self, source: SourceDescriptor, payload: Any) -> ParseResult:
        """Turn a decoded payload into topics, skipping malformed items."""
        return self.parse_items(source, self.extract_items(source, payload))

    def parse_items(self, source: SourceDescriptor, items: list[Any]) -> ParseResult:
        result = ParseResult(topics=[])
        for raw in items:
            try:
                if not isinstance(raw, dict):
                    raise TypeError(f"expected object, got {type(raw).__name__}")
                topic = self.transform(source, raw)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                result.malformed += 1
                logger.debug(
                    "Skipping malformed item from %s: %s: %s",
                    source.id,
                    type(e).__name__,
                    e,
                )
                continue
            if topic is not None:
                result.topics.append(topic)

        if result.malformed:
            logger.warning(
                "Skipped %d malformed items from %s (%d parsed)",
                result.malformed,
                source.id,
                len(result.topics),
            )
        return result

    def classify_http_error(
        self, source: SourceDescriptor, error: UpstreamHTTPError
    ) -> FetchError:
        """Map a non-retryable (or exhausted) HTTP error to the fetch taxonomy."""
        status = error.status_code
        if status in (401, 403):
            return AuthError(f"HTTP {status} from {source.id}", status_code=status)
        if status is None:
            return TransientFetchError(str(error))
        return TransientFetchError(f"HTTP {status} from {source.id}", status_code=status)

    def now(self) -> datetime:
        return self._clock()


class GraphQLAdapter(SourceAdapter):
    """Shared handling for GraphQL upstreams: ``{"data": ..., "errors": [...]}``."""

    def graphql_data(self, source: SourceDescriptor, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise DefunctSourceError(f"{source.id}: GraphQL response is not an object")

        errors = payload.get("errors")
        data = payload.get("data")
        if errors and not data:
            first = errors[0] if isinstance(errors, list) and errors else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise TransientFetchError(f"{source.id}: GraphQL error: {message}")
        if not isinstance(data, dict):
            raise DefunctSourceError(f"{source.id}: GraphQL response has no data")
        return data


# Common parsing utilities used across adapters

_TAG_RE = re.compile(r"<[^>]*>")


def clean_text(text: str) -> str:
    """Collapse whitespace and drop control characters."""
    text = " ".join(text.split())
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
    return text.strip()


def make_excerpt(text: str | None, max_length: int = EXCERPT_LENGTH) -> str | None:
    """Strip HTML and truncate to ``max_length`` characters."""
    if not text:
        return None
    plain = clean_text(_TAG_RE.sub("", text))
    if not plain:
        return None
    if len(plain) <= max_length:
        return plain
    return plain[:max_length].rstrip() + "…"


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 strings or epoch seconds into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    raise ValueError(f"Unparseable timestamp: {value!r}")


def non_negative_int(value: Any, default: int = 0) -> int:
    """Coerce upstream counters; missing or negative values become ``default``."""
    if value is None:
        return default
    number = int(value)
    return number if number >= 0 else default

