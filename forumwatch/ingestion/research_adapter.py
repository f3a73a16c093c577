"""
Research forum adapter (EA Forum / LessWrong).

Both run ForumMagnum and expose the same GraphQL API; no auth is needed
for reading. The ``limit`` must be inlined into the query text because the
API ignores it when passed as a variable.
"""

import logging
from typing import Any

from forumwatch.ingestion.base_adapter import (
    AdapterRequest,
    GraphQLAdapter,
    make_excerpt,
    non_negative_int,
    parse_timestamp,
)
from forumwatch.ingestion.errors import DefunctSourceError
from forumwatch.ingestion.schemas import Topic, make_ref_id
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)


def build_posts_query(limit: int) -> str:
    return f"""
query RecentPosts {{
  posts(input: {{terms: {{view: "new", limit: {int(limit)}}}}}) {{
    results {{
      _id
      title
      slug
      postedAt
      modifiedAt
      baseScore
      voteCount
      commentCount
      tags {{ name }}
      user {{ displayName slug }}
      contents {{ plaintextMainText }}
    }}
  }}
}}
"""


class ResearchForumAdapter(GraphQLAdapter):
    """Adapter for ForumMagnum-based research forums."""

    def __init__(self, page_size: int = 30, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._page_size = page_size

    @property
    def kind(self) -> SourceKind:
        return SourceKind.RESEARCH_FORUM

    def build_request(self, source: SourceDescriptor) -> AdapterRequest:
        return AdapterRequest(
            method="POST",
            url=source.endpoint,
            json_body={"query": build_posts_query(self._page_size)},
        )

    def extract_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        data = self.graphql_data(source, payload)
        posts = data.get("posts")
        if not isinstance(posts, dict) or not isinstance(posts.get("results"), list):
            raise DefunctSourceError(f"{source.id}: response missing posts.results")
        return posts["results"]

    def transform(self, source: SourceDescriptor, raw: dict[str, Any]) -> Topic | None:
        post_id = raw["_id"]
        slug = raw.get("slug") or post_id
        created_at = parse_timestamp(raw["postedAt"])
        modified = raw.get("modifiedAt")

        base_score = raw.get("baseScore")
        contents = raw.get("contents") or {}
        user = raw.get("user") or {}

        return Topic(
            source_id=source.id,
            external_id=post_id,
            ref_id=make_ref_id(source.id, post_id),
            title=raw["title"],
            permalink=f"{source.base_url.rstrip('/')}/posts/{post_id}/{slug}",
            tags=[t.get("name") for t in raw.get("tags") or [] if isinstance(t, dict)],
            reply_count=non_negative_int(raw.get("commentCount")),
            view_count=0,
            like_count=non_negative_int(raw.get("voteCount")),
            engagement_score=float(base_score) if base_score is not None else None,
            created_at=created_at,
            last_activity_at=parse_timestamp(modified) if modified else created_at,
            excerpt=make_excerpt(contents.get("plaintextMainText")),
            author_name=user.get("displayName") or "Anonymous",
        )
