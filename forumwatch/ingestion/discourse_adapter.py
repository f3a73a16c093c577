"""
Discourse forum adapter.

Polls ``GET {base_url}/latest.json`` (or ``/c/{category_id}.json`` when the
source is pinned to one category) and maps ``topic_list.topics[]`` into
Topics. ``/search.json?q=`` returns the same topic objects under ``topics``
with post blurbs alongside.

A response without ``topic_list`` means the host is no longer a Discourse
forum (parked domain, migrated platform, login wall) and is
reported as a defunct signal.

Discourse field notes:
    - ``reply_count`` is sometimes absent; ``posts_count - 1`` is equivalent
    - ``tags`` are strings on older versions, ``{"name": ...}`` objects on newer
    - ``bumped_at`` is the last-activity timestamp used for recency
"""

import logging
from typing import Any

from forumwatch.ingestion.base_adapter import (
    AdapterRequest,
    SourceAdapter,
    make_excerpt,
    non_negative_int,
    parse_timestamp,
)
from forumwatch.ingestion.errors import DefunctSourceError
from forumwatch.ingestion.schemas import Topic, make_ref_id
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)


class DiscourseAdapter(SourceAdapter):
    """Adapter for Discourse ``/latest.json``, category feeds and search."""

    @property
    def kind(self) -> SourceKind:
        return SourceKind.DISCOURSE

    @staticmethod
    def _base(source: SourceDescriptor) -> str:
        return source.base_url.rstrip("/")

    def build_request(self, source: SourceDescriptor) -> AdapterRequest:
        if source.category_id is not None:
            path = f"/c/{source.category_id}.json"
        else:
            path = "/latest.json"
        return AdapterRequest(
            method="GET",
            url=f"{self._base(source)}{path}",
            headers={"Accept": "application/json"},
        )

    def build_search_request(self, source: SourceDescriptor, query: str) -> AdapterRequest:
        return AdapterRequest(
            method="GET",
            url=f"{self._base(source)}/search.json",
            params={"q": query, "page": 1},
            headers={"Accept": "application/json"},
        )

    def extract_search_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        """Matched topics, each given the blurb of its first matching post."""
        if not isinstance(payload, dict):
            raise DefunctSourceError(f"{source.id}: search response is not an object")

        topics = payload.get("topics") or []
        if not isinstance(topics, list):
            raise DefunctSourceError(f"{source.id}: search topics is not a list")

        blurbs: dict[Any, str] = {}
        for post in payload.get("posts") or []:
            if isinstance(post, dict) and post.get("blurb"):
                blurbs.setdefault(post.get("topic_id"), post["blurb"])

        items = []
        for raw in topics:
            if isinstance(raw, dict) and not raw.get("excerpt") and isinstance(raw.get("id"), int):
                raw = {**raw, "excerpt": blurbs.get(raw["id"])}
            items.append(raw)
        return items

    def extract_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("topic_list"), dict):
            raise DefunctSourceError(f"{source.id}: response missing topic_list")

        topics = payload["topic_list"].get("topics")
        if topics is None:
            return []
        if not isinstance(topics, list):
            raise DefunctSourceError(f"{source.id}: topic_list.topics is not a list")
        return topics

    def transform(self, source: SourceDescriptor, raw: dict[str, Any]) -> Topic | None:
        topic_id = raw["id"]
        title = raw["title"]
        slug = raw.get("slug") or "topic"

        created_at = parse_timestamp(raw["created_at"])
        bumped = raw.get("bumped_at") or raw.get("last_posted_at")
        last_activity_at = parse_timestamp(bumped) if bumped else created_at

        reply_count = raw.get("reply_count")
        if reply_count is None:
            reply_count = max(0, non_negative_int(raw.get("posts_count"), 1) - 1)

        tags = [
            tag if isinstance(tag, str) else tag.get("name")
            for tag in (raw.get("tags") or [])
        ]

        external_id = str(topic_id)
        return Topic(
            source_id=source.id,
            external_id=external_id,
            ref_id=make_ref_id(source.id, external_id),
            title=title,
            permalink=f"{self._base(source)}/t/{slug}/{topic_id}",
            tags=tags,
            reply_count=non_negative_int(reply_count),
            view_count=non_negative_int(raw.get("views")),
            like_count=non_negative_int(raw.get("like_count")),
            created_at=created_at,
            last_activity_at=last_activity_at,
            pinned=bool(raw.get("pinned")),
            closed=bool(raw.get("closed")),
            archived=bool(raw.get("archived")),
            excerpt=make_excerpt(raw.get("excerpt")),
            author_name=raw.get("last_poster_username"),
        )
