"""
Cache administration endpoints (X-API-KEY required).
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from forumwatch.api.auth import verify_admin_key
from forumwatch.api.dependencies import get_query_service
from forumwatch.api.models import (
    CacheResponse,
    CacheStatsResponse,
    ClearDefunctResponse,
    ErrorInfoResponse,
    RefreshReportResponse,
    RefreshRequest,
    RefreshResponse,
    SourceHealthResponse,
)
from forumwatch.services.query_service import QueryService

router = APIRouter(prefix="/cache", dependencies=[Depends(verify_admin_key)])
logger = structlog.get_logger(__name__)


@router.get("", response_model=CacheResponse)
async def get_cache(
    details: bool = Query(default=False, description="Include per-source health"),
    service: QueryService = Depends(get_query_service),
) -> CacheResponse:
    """Cache statistics, optionally with every source's health."""
    sources = None
    if details:
        sources = [SourceHealthResponse.from_health(h) for h in service.get_source_health()]
    return CacheResponse(
        stats=CacheStatsResponse.from_stats(service.get_stats()),
        sources=sources,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_sources(
    request: RefreshRequest,
    response: Response,
    service: QueryService = Depends(get_query_service),
) -> RefreshResponse:
    """
    Force a refresh regardless of TTL.

    By default the job is queued and 202 is returned immediately. With
    ``wait=true`` the call blocks until the refresh finishes or the timeout
    passes, and returns the per-source report.
    """
    if not request.wait:
        service.trigger_refresh(request.source_ids)
        response.status_code = status.HTTP_202_ACCEPTED
        logger.info("Refresh queued", sources=len(request.source_ids))
        return RefreshResponse(queued=True)

    orchestrator = service.orchestrator
    timeout = request.timeout_seconds or orchestrator.config.request_timeout_seconds
    report = await orchestrator.refresh_now(request.source_ids, timeout=timeout)
    logger.info(
        "Refresh finished",
        succeeded=len(report.succeeded),
        failed=len(report.failed),
        skipped=len(report.skipped),
    )
    return RefreshResponse(
        queued=False,
        report=RefreshReportResponse(
            succeeded=report.succeeded,
            failed={sid: ErrorInfoResponse.from_error(err) for sid, err in report.failed.items()},
            skipped=report.skipped,
            topic_count=report.topic_count,
        ),
    )


@router.post("/defunct/{source_id}/clear", response_model=ClearDefunctResponse)
async def clear_defunct(
    source_id: str,
    service: QueryService = Depends(get_query_service),
) -> ClearDefunctResponse:
    """Make a defunct source eligible for refresh again."""
    if source_id not in service.registry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown source: {source_id}",
        )
    cleared = service.clear_defunct(source_id)
    logger.info("Clear defunct requested", source_id=source_id, cleared=cleared)
    return ClearDefunctResponse(source_id=source_id, cleared=cleared)
