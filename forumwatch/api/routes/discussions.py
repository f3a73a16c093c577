"""
Public read endpoints: briefs, discussions, digests and search.

All are guarded by the inbound rate limiter. Everything except an
upstream search is served from the cache.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from forumwatch.api.dependencies import get_query_service
from forumwatch.api.models import (
    BriefsResponse,
    DigestItemResponse,
    DigestResponse,
    DiscussionsResponse,
    ErrorInfoResponse,
    RankedTopicResponse,
    SearchResponse,
    SourceTopicsResponse,
)
from forumwatch.api.rate_limit import enforce_inbound_limit
from forumwatch.services.query_service import ALL_CATEGORIES, QueryService

router = APIRouter(dependencies=[Depends(enforce_inbound_limit)])

MAX_SOURCE_IDS = 100
MAX_SEARCH_RESULTS = 50


@router.get("/briefs", response_model=BriefsResponse)
async def get_briefs(
    category: str = Query(default=ALL_CATEGORIES, description="'all' or a category tag"),
    service: QueryService = Depends(get_query_service),
) -> BriefsResponse:
    """Top hot and newest topics across cached sources."""
    if category != ALL_CATEGORIES and category not in service.registry.categories():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown category: {category}",
        )

    briefs = service.get_briefs(category)
    return BriefsResponse(
        category=briefs.category,
        hot=[RankedTopicResponse.from_ranked(r) for r in briefs.ranking.hot],
        fresh=[RankedTopicResponse.from_ranked(r) for r in briefs.ranking.fresh],
        cached_source_count=briefs.ranking.source_count,
    )


@router.get("/discussions", response_model=DiscussionsResponse)
async def get_discussions(
    source_id: list[str] = Query(default=[], description="Sources to read (all cached if empty)"),
    service: QueryService = Depends(get_query_service),
) -> DiscussionsResponse:
    """Cached topics per source, with each source's error flag."""
    if len(source_id) > MAX_SOURCE_IDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_SOURCE_IDS} source ids per request",
        )

    unknown: list[str] = []
    if source_id:
        known, unknown = service.registry.resolve(dict.fromkeys(source_id))
        entries = service.get_cached(s.id for s in known)
    else:
        entries = service.get_all()

    sources = [SourceTopicsResponse.from_entry(e) for e in entries]
    return DiscussionsResponse(
        sources=sources,
        topic_count=sum(len(s.topics) for s in sources),
        unknown_source_ids=unknown,
    )


@router.get("/digest", response_model=DigestResponse)
async def get_digest(
    period: str = Query(default="weekly", pattern="^(daily|weekly)$"),
    keyword: list[str] = Query(default=[], description="Keywords to match in titles"),
    source_id: list[str] = Query(default=[], description="Sources to include (all if empty)"),
    service: QueryService = Depends(get_query_service),
) -> DigestResponse:
    """Digest sections built from cached topics."""
    sections = service.get_digest(
        source_ids=source_id or None,
        period=period,
        keywords=keyword,
    )
    return DigestResponse(
        period=sections.period,
        start=sections.start,
        end=sections.end,
        summary=sections.summary,
        keyword_matches=[DigestItemResponse.from_item(i) for i in sections.keyword_matches],
        new_conversations=[DigestItemResponse.from_item(i) for i in sections.new_conversations],
        trending=[DigestItemResponse.from_item(i) for i in sections.trending],
        delegate_corner=[DigestItemResponse.from_item(i) for i in sections.delegate_corner],
    )


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., max_length=200, description="Terms that must all appear"),
    source_id: list[str] = Query(default=[], description="Sources to search (all if empty)"),
    limit: int = Query(default=20, ge=1, le=MAX_SEARCH_RESULTS),
    upstream: bool = Query(default=False, description="Ask the forums instead of the cache"),
    service: QueryService = Depends(get_query_service),
) -> SearchResponse:
    """Search cached topics, or the Discourse forums themselves with upstream=true."""
    query = q.strip()
    if len(query) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query must be at least 2 characters",
        )
    if len(source_id) > MAX_SOURCE_IDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_SOURCE_IDS} source ids per request",
        )

    unknown: list[str] = []
    ids = None
    if source_id:
        known, unknown = service.registry.resolve(dict.fromkeys(source_id))
        ids = [s.id for s in known]

    if not upstream:
        return SearchResponse(
            query=query,
            upstream=False,
            topics=service.search(query, ids, limit=limit),
            unknown_source_ids=unknown,
        )

    results = await service.search_upstream(query, ids, limit=limit)
    return SearchResponse(
        query=query,
        upstream=True,
        topics=results.topics,
        searched_source_ids=results.source_ids,
        failed={sid: ErrorInfoResponse.from_error(err) for sid, err in results.failed.items()},
        unknown_source_ids=unknown,
    )
