"""
Digest section builder.

Splits recently active topics into the four digest sections:

1. Keyword matches: new topics whose title contains a followed keyword,
   most matched keywords first.
2. New conversations: other new topics, by replies + likes.
3. Trending: older topics still active in the period, by hot score
   times recency.
4. Delegate corner: delegate threads, by replies + views/100.

Pinned and meta threads (introductions, guidelines, FAQs) never appear.
A topic appears in at most one of the first three sections.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from forumwatch.ingestion.schemas import Topic
from forumwatch.ranking.config import RankingConfig
from forumwatch.ranking.scoring import (
    DELEGATE_WEIGHTS,
    HOT_WEIGHTS,
    NEW_CONVERSATION_WEIGHTS,
    engagement_score,
    recency_multiplier,
)

DigestPeriod = Literal["daily", "weekly"]

PERIOD_DAYS: dict[str, int] = {"daily": 1, "weekly": 7}

DELEGATE_TITLE_PATTERNS = (
    "delegate",
    "delegation",
    "delegator",
    "voting power",
    "seeking delegation",
)
DELEGATE_TAGS = frozenset({"delegate", "delegation", "delegates", "delegate-platform", "delegate-thread"})

META_TITLE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"introduce yourself",
        r"introductions?$",
        r"welcome.*thread",
        r"read this before",
        r"posting guidelines",
        r"forum rules",
        r"^about the",
        r"^how to use",
        r"community guidelines",
        r"code of conduct",
        r"faq$",
        r"getting started",
    )
)
META_TAGS = frozenset({"meta", "guidelines", "introductions", "welcome", "faq", "rules"})


def _lower_tags(tags: Iterable[str]) -> set[str]:
    return {t.lower() for t in tags}


def is_delegate_thread(title: str, tags: Iterable[str]) -> bool:
    title_lower = title.lower()
    if any(p in title_lower for p in DELEGATE_TITLE_PATTERNS):
        return True
    return bool(_lower_tags(tags) & DELEGATE_TAGS)


def is_meta_thread(title: str, tags: Iterable[str]) -> bool:
    if any(p.search(title) for p in META_TITLE_PATTERNS):
        return True
    return bool(_lower_tags(tags) & META_TAGS)


def match_keywords(title: str, keywords: Iterable[str]) -> tuple[str, ...]:
    """Keywords contained in ``title`` (case-insensitive), in the given order."""
    title_lower = title.lower()
    return tuple(kw for kw in keywords if kw and kw.lower() in title_lower)


@dataclass(frozen=True)
class DigestItem:
    topic: Topic
    score: float
    matched_keywords: tuple[str, ...] = ()


@dataclass
class DigestSections:
    """The four digest sections plus activity totals for the period."""

    period: str
    start: datetime
    end: datetime
    keyword_matches: list[DigestItem] = field(default_factory=list)
    new_conversations: list[DigestItem] = field(default_factory=list)
    trending: list[DigestItem] = field(default_factory=list)
    delegate_corner: list[DigestItem] = field(default_factory=list)
    discussion_count: int = 0
    delegate_thread_count: int = 0
    community_count: int = 0
    total_replies: int = 0

    @property
    def summary(self) -> str:
        return (
            f"{self.discussion_count} discussions + {self.delegate_thread_count} "
            f"delegate threads active across {self.community_count} communities."
        )


def build_digest_sections(
    topics: Iterable[Topic],
    now: datetime,
    period: DigestPeriod = "weekly",
    keywords: Iterable[str] = (),
    config: RankingConfig | None = None,
) -> DigestSections:
    """Build digest sections from ``topics`` active within ``period`` before ``now``."""
    config = config or RankingConfig()
    limit = config.digest_section_limit
    period_days = PERIOD_DAYS[period]
    start = now - timedelta(days=period_days)
    keywords = tuple(keywords)

    active = [
        t for t in topics
        if t.last_activity_at > start and not t.pinned and not is_meta_thread(t.title, t.tags)
    ]
    delegates = [t for t in active if is_delegate_thread(t.title, t.tags)]
    delegate_ids = {t.ref_id for t in delegates}
    regular = [t for t in active if t.ref_id not in delegate_ids]
    new_regular = [t for t in regular if t.created_at > start]

    sections = DigestSections(
        period=period,
        start=start,
        end=now,
        discussion_count=len(regular),
        delegate_thread_count=len(delegates),
        community_count=len({t.source_id for t in active}),
        total_replies=sum(t.reply_count for t in active),
    )

    used: set[str] = set()

    matched = []
    for t in new_regular:
        kws = match_keywords(t.title, keywords)
        if kws:
            matched.append(DigestItem(t, engagement_score(t, NEW_CONVERSATION_WEIGHTS), kws))
    matched.sort(key=lambda i: (-len(i.matched_keywords), -i.score, i.topic.ref_id))
    sections.keyword_matches = matched[:limit]
    used.update(i.topic.ref_id for i in sections.keyword_matches)

    fresh = [
        DigestItem(t, engagement_score(t, NEW_CONVERSATION_WEIGHTS))
        for t in new_regular
        if t.ref_id not in used
    ]
    fresh.sort(key=lambda i: (-i.score, i.topic.ref_id))
    sections.new_conversations = fresh[:limit]
    used.update(i.topic.ref_id for i in sections.new_conversations)

    trending = [
        DigestItem(
            t,
            engagement_score(t, HOT_WEIGHTS)
            * recency_multiplier(t.last_activity_at, now, period_days),
        )
        for t in regular
        if t.ref_id not in used and t.created_at <= start
    ]
    trending.sort(key=lambda i: (-i.score, i.topic.ref_id))
    sections.trending = trending[:limit]

    corner = [DigestItem(t, engagement_score(t, DELEGATE_WEIGHTS)) for t in delegates]
    corner.sort(key=lambda i: (-i.score, i.topic.ref_id))
    sections.delegate_corner = corner[: config.delegate_corner_limit]

    return sections
