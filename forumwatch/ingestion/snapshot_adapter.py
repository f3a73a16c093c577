"""
Snapshot governance adapter.

Polls proposals for one space from the public GraphQL hub. No auth is
required (100 req/min); an optional ``SNAPSHOT_API_KEY`` is sent as
``x-api-key`` to get a higher quota. Votes are reported as replies and the
total voting power as likes, so proposals rank alongside forum threads.
"""

import logging
from datetime import datetime
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
from forumwatch.sources.schemas import SNAPSHOT_GRAPHQL_ENDPOINT, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

PROPOSALS_QUERY = """
query Proposals($space: String!, $first: Int!, $skip: Int!) {
  proposals(
    first: $first,
    skip: $skip,
    where: { space: $space },
    orderBy: "created",
    orderDirection: desc
  ) {
    id
    title
    body
    choices
    start
    end
    state
    author
    scores
    scores_total
    votes
    space { id name }
  }
}
"""

MAX_PAGE_SIZE = 100
SUMMARY_CHOICES = 3


def proposal_state(start: datetime, end: datetime, now: datetime) -> str:
    """pending before start, active until end (inclusive), closed after."""
    if now < start:
        return "pending"
    if now <= end:
        return "active"
    return "closed"


def format_vote_results(choices: list[str], scores: list[float], total: float) -> str:
    """``"For: 72% · Against: 28%"`` for the first three choices."""
    if not scores:
        return ""
    parts = []
    for i, choice in enumerate(choices[:SUMMARY_CHOICES]):
        score = scores[i] if i < len(scores) and scores[i] else 0
        pct = round(score / total * 100) if total > 0 else 0
        parts.append(f"{choice}: {pct}%")
    return " · ".join(parts)


def shorten_address(address: str | None) -> str:
    if not address:
        return "Unknown"
    if len(address) <= 12 or not address.startswith("0x"):
        return address
    return f"{address[:6]}…{address[-4:]}"


class SnapshotAdapter(GraphQLAdapter):
    """Adapter for Snapshot spaces."""

    def __init__(self, api_key: str | None = None, page_size: int = 20, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key
        self._page_size = min(page_size, MAX_PAGE_SIZE)

    @property
    def kind(self) -> SourceKind:
        return SourceKind.SNAPSHOT

    def build_request(self, source: SourceDescriptor) -> AdapterRequest:
        headers = {"x-api-key": self._api_key} if self._api_key else {}
        return AdapterRequest(
            method="POST",
            url=SNAPSHOT_GRAPHQL_ENDPOINT,
            json_body={
                "query": PROPOSALS_QUERY,
                "variables": {
                    "space": source.snapshot_space,
                    "first": self._page_size,
                    "skip": 0,
                },
            },
            headers=headers,
        )

    def extract_items(self, source: SourceDescriptor, payload: Any) -> list[Any]:
        data = self.graphql_data(source, payload)
        proposals = data.get("proposals")
        if not isinstance(proposals, list):
            raise DefunctSourceError(f"{source.id}: response missing proposals")
        return proposals

    def transform(self, source: SourceDescriptor, raw: dict[str, Any]) -> Topic | None:
        proposal_id = raw["id"]
        space = source.snapshot_space
        start = parse_timestamp(raw["start"])
        end = parse_timestamp(raw["end"])
        state = proposal_state(start, end, self.now())

        choices = [str(c) for c in raw.get("choices") or []]
        scores_total = float(raw.get("scores_total") or 0)
        votes = non_negative_int(raw.get("votes"))

        summary = format_vote_results(choices, raw.get("scores") or [], scores_total)
        header = f"[{state.upper()}] {summary}" if summary else f"[{state.upper()}]"
        body = make_excerpt(raw.get("body"))
        excerpt = f"{header}\n{body}" if body else header

        return Topic(
            source_id=source.id,
            external_id=proposal_id,
            ref_id=make_ref_id(source.id, proposal_id),
            title=raw["title"],
            permalink=f"https://snapshot.org/#/{space}/proposal/{proposal_id}",
            tags=[state, f"{votes} votes", *choices[:SUMMARY_CHOICES]],
            reply_count=votes,
            view_count=0,
            like_count=max(0, round(scores_total)),
            engagement_score=scores_total,
            created_at=start,
            last_activity_at=end,
            pinned=state == "active",
            closed=state == "closed",
            excerpt=excerpt,
            author_name=shorten_address(raw.get("author")),
        )
