"""Data models for the sources module."""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit


class SourceKind(str, Enum):
    """Upstream API families. Each kind has exactly one adapter."""

    DISCOURSE = "discourse-forum"
    GITHUB_DISCUSSIONS = "github-discussions"
    SNAPSHOT = "snapshot-space"
    RESEARCH_FORUM = "research-forum"


GITHUB_GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
SNAPSHOT_GRAPHQL_ENDPOINT = "https://hub.snapshot.org/graphql"


@dataclass(frozen=True)
class SourceDescriptor:
    """A polled upstream (Discourse forum, GitHub repo, Snapshot space, research forum).

    Created once at startup from the registry file and never mutated.
    The kind-specific locator fields are only meaningful for their kind:
    ``repo_ref`` for GitHub Discussions, ``snapshot_space`` for Snapshot and
    ``api_url`` for research forums. A Discourse source with
    ``category_id`` polls that one category instead of the whole forum.
    """

    id: str
    display_name: str
    base_url: str
    source_kind: SourceKind
    category_tag: str
    tier: int = 2
    enabled: bool = True
    repo_ref: str | None = None
    snapshot_space: str | None = None
    api_url: str | None = None
    category_id: int | None = None
    logo_url: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.tier not in (1, 2, 3):
            raise ValueError(f"Source {self.id}: tier must be 1, 2 or 3, got {self.tier}")
        if self.source_kind == SourceKind.GITHUB_DISCUSSIONS and not self.repo_ref:
            raise ValueError(f"Source {self.id}: github-discussions requires repo_ref")
        if self.source_kind == SourceKind.SNAPSHOT and not self.snapshot_space:
            raise ValueError(f"Source {self.id}: snapshot-space requires snapshot_space")

    @property
    def endpoint(self) -> str:
        """URL actually called when polling this source."""
        if self.source_kind == SourceKind.GITHUB_DISCUSSIONS:
            return GITHUB_GRAPHQL_ENDPOINT
        if self.source_kind == SourceKind.SNAPSHOT:
            return SNAPSHOT_GRAPHQL_ENDPOINT
        if self.source_kind == SourceKind.RESEARCH_FORUM:
            return self.api_url or f"{self.base_url.rstrip('/')}/graphql"
        if self.category_id is not None:
            return f"{self.base_url.rstrip('/')}/c/{self.category_id}.json"
        return f"{self.base_url.rstrip('/')}/latest.json"

    @property
    def domain(self) -> str:
        """Outbound rate-limit key: host of the endpoint."""
        return (urlsplit(self.endpoint).hostname or "").lower()
