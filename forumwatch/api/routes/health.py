"""
Health check endpoint derived from cache state.
"""

import structlog
from fastapi import APIRouter, Depends

from forumwatch import __version__
from forumwatch.api.dependencies import get_query_service
from forumwatch.api.models import HealthResponse
from forumwatch.services.query_service import QueryService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    service: QueryService = Depends(get_query_service),
) -> HealthResponse:
    """
    Report cache health.

    ``unhealthy`` when every cached source is failing, ``degraded`` when
    some are, ``healthy`` otherwise (including before the first refresh).
    """
    stats = service.get_stats()

    if stats.source_count and stats.error_count >= stats.source_count:
        status = "unhealthy"
    elif stats.error_count:
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning("Health check not healthy", status=status, error_count=stats.error_count)

    return HealthResponse(
        status=status,
        version=__version__,
        source_count=len(service.registry),
        cached_source_count=stats.source_count,
        error_count=stats.error_count,
        defunct_count=stats.defunct_count,
        in_flight=stats.in_flight,
        oldest_fetched_at=stats.oldest_fetched_at,
    )
