"""
GitHub Discussions adapter.

Uses the GraphQL API (bearer token from GITHUB_TOKEN; several comma-separated
tokens are rotated per request). Rate limit is 5,000 points/hour per token.

A 403 with ``x-ratelimit-remaining: 0`` is quota exhaustion, reported as its
own error kind so it is never mistaken for a defunct source. A null
``repository`` means the repo is gone or discussions were disabled, which is
a defunct signal.
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
from forumwatch.ingestion.errors import (
    AuthError,
    DefunctSourceError,
    FetchError,
    UpstreamRateLimitError,
)
from forumwatch.ingestion.http_client import TokenRotator, UpstreamHTTPError
from forumwatch.ingestion.schemas import Topic, make_ref_id
from forumwatch.sources.schemas import GITHUB_GRAPHQL_ENDPOINT, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

DISCUSSIONS_QUERY = """
query RecentDiscussions($owner: String!, $repo: String!, $first: Int!) {
  repository(owner: $owner, name: $repo) {
    discussions(first: $first, orderBy: {field: UPDATED_AT, direction: DESC}) {
      nodes {
        id
        number
        title
        url
        createdAt
        updatedAt
        author { login }
        category { name }
        comments { totalCount }
        reactions { totalCount }
        upvoteCount
        bodyText
        labels(first: 5) { nodes { name } }
        locked
        closed
        isAnswered
      }
    }
  }
}
"""

MAX_PAGE_SIZE = 50


def parse_repo_ref(repo_ref: str) -> tuple[str, str]:
    """Split ``owner/repo``; raises ValueError on anything else."""
    parts = repo_ref.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid repo format: {repo_ref} (expected owner/repo)")
    return parts[0], parts[1]


class GitHubDiscussionsAdapter(GraphQLAdapter):
    """Adapter for GitHub Discussions via GraphQL."""

    def __init__(
        self,
        tokens: TokenRotator | None = None,
        page_size: int = 30,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._tokens = tokens
        self._page_size = min(page_size, MAX_PAGE_SIZE)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.GITHUB_DISCUSSIONS

    def build_request(self, source: SourceDescriptor) -> AdapterRequest:
        if self._tokens is None:
            raise AuthError(f"{source.id}: GITHUB_TOKEN not configured")

        owner, repo = parse_repo_ref(source.repo_ref or "")
        return AdapterRequest(
            method="POST",
            url=GITHUB_GRAPHQL_ENDPOINT,
            json_body={
                "query": DISCUSSIONS_QUERY,
                "variables": {"owner": owner, "repo": repo, "first": self._page_size},
            },
            tokens=self._tokens,
        )

    def classify_http_error(
        self, source: SourceDescriptor, error: UpstreamHTTPError
    ) -> FetchError:
        if error.status_code == 403 and error.headers.get("x-ratelimit-remaining") == "0":
            return UpstreamRateLimitError(
                f"{source.id}: GitHub API rate limit exceeded",
                status_code=403,
            )
        if error.status_code == 401:
            return AuthError(f"{source.id}: invalid GITHUB_TOKEN", status_code=401)
        if error.status_code == 403:
            return AuthError(
                f"{source.id}: GitHub API forbidden (check token permissions)",
                status_code=403,
            )
        return super().classify_http_error(source, error)

    def extract_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        data = self.graphql_data(source, payload)
        repository = data.get("repository")
        if not isinstance(repository, dict) or not isinstance(repository.get("discussions"), dict):
            raise DefunctSourceError(
                f"{source.id}: repository not found or discussions not enabled"
            )
        return repository["discussions"].get("nodes") or []

    def transform(self, source: SourceDescriptor, raw: dict[str, Any]) -> Topic | None:
        number = raw["number"]
        upvotes = non_negative_int(raw.get("upvoteCount"))
        reactions = non_negative_int((raw.get("reactions") or {}).get("totalCount"))
        comments = non_negative_int((raw.get("comments") or {}).get("totalCount"))

        tags: list[str] = []
        category = raw.get("category") or {}
        if category.get("name"):
            tags.append(category["name"])
        tags.extend(
            label["name"]
            for label in (raw.get("labels") or {}).get("nodes") or []
            if label and label.get("name")
        )
        if raw.get("isAnswered"):
            tags.append("answered")

        created_at = parse_timestamp(raw["createdAt"])
        updated = raw.get("updatedAt")
        external_id = str(number)

        return Topic(
            source_id=source.id,
            external_id=external_id,
            ref_id=make_ref_id(source.id, external_id),
            title=raw["title"],
            permalink=raw.get("url") or f"https://github.com/{source.repo_ref}/discussions/{number}",
            tags=tags,
            reply_count=comments,
            view_count=0,
            like_count=upvotes + reactions,
            engagement_score=float(upvotes),
            created_at=created_at,
            last_activity_at=parse_timestamp(updated) if updated else created_at,
            closed=bool(raw.get("closed")),
            archived=bool(raw.get("locked")),
            excerpt=make_excerpt(raw.get("bodyText")),
            author_name=(raw.get("author") or {}).get("login") or "ghost",
        )
