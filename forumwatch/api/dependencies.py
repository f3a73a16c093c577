"""
Dependency injection for FastAPI endpoints.

The cache pipeline (registry, store, fetcher, orchestrator, worker pool)
is process-global: one instance of each, created on first use and torn
down by ``cleanup_dependencies()`` at shutdown.
"""

from functools import lru_cache

from fastapi import Request

from forumwatch.cache.config import CacheConfig
from forumwatch.cache.store import CacheStore
from forumwatch.config.settings import get_settings
from forumwatch.ingestion.config import FetchConfig
from forumwatch.ingestion.fetcher import Fetcher, build_adapters
from forumwatch.ranking.config import RankingConfig
from forumwatch.ratelimit.config import RateLimitConfig
from forumwatch.ratelimit.limiter import WindowRateLimiter
from forumwatch.refresh.config import RefreshConfig
from forumwatch.refresh.orchestrator import RefreshOrchestrator
from forumwatch.refresh.worker_pool import RefreshWorkerPool
from forumwatch.services.polling_service import PollingService
from forumwatch.services.query_service import QueryService
from forumwatch.sources.registry import SourceRegistry, load_registry

# Global instances (initialized on first request)
_registry: SourceRegistry | None = None
_store: CacheStore | None = None
_fetcher: Fetcher | None = None
_orchestrator: RefreshOrchestrator | None = None
_worker_pool: RefreshWorkerPool | None = None
_query_service: QueryService | None = None


def get_registry() -> SourceRegistry:
    global _registry
    if _registry is None:
        _registry = load_registry(get_settings().sources_file)
    return _registry


def get_cache_store() -> CacheStore:
    global _store
    if _store is None:
        _store = CacheStore(CacheConfig())
    return _store


@lru_cache
def get_rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig()


def create_inbound_limiter() -> WindowRateLimiter:
    return WindowRateLimiter(name="inbound", max_keys=get_rate_limit_config().max_keys)


def get_inbound_limiter(request: Request) -> WindowRateLimiter:
    """Inbound limiter keyed by client IP, owned by the app."""
    return request.app.state.limiter


async def get_fetcher() -> Fetcher:
    """Shared fetcher; its HTTP client is opened on creation."""
    global _fetcher
    if _fetcher is None:
        settings = get_settings()
        fetch_config = FetchConfig()
        rate_config = get_rate_limit_config()
        fetcher = Fetcher(
            build_adapters(settings, fetch_config),
            limiter=WindowRateLimiter(name="outbound", max_keys=rate_config.max_keys),
            config=fetch_config,
            rate_limit_config=rate_config,
            user_agent=settings.user_agent,
        )
        await fetcher.__aenter__()
        _fetcher = fetcher
    return _fetcher


async def get_orchestrator() -> RefreshOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RefreshOrchestrator(
            registry=get_registry(),
            store=get_cache_store(),
            fetcher=await get_fetcher(),
            config=RefreshConfig(),
        )
    return _orchestrator


async def get_worker_pool() -> RefreshWorkerPool:
    global _worker_pool
    if _worker_pool is None:
        _worker_pool = RefreshWorkerPool(await get_orchestrator())
    return _worker_pool


async def get_query_service() -> QueryService:
    """Get the read façade over the shared cache."""
    global _query_service
    if _query_service is None:
        _query_service = QueryService(
            registry=get_registry(),
            store=get_cache_store(),
            orchestrator=await get_orchestrator(),
            worker_pool=await get_worker_pool(),
            ranking_config=RankingConfig(),
        )
    return _query_service


async def create_polling_service() -> PollingService:
    return PollingService(await get_orchestrator())


async def cleanup_dependencies() -> None:
    """Stop background workers and close the HTTP client."""
    global _registry, _store, _fetcher, _orchestrator, _worker_pool, _query_service

    if _worker_pool is not None:
        await _worker_pool.stop()
    if _fetcher is not None:
        await _fetcher.__aexit__(None, None, None)

    _registry = None
    _store = None
    _fetcher = None
    _orchestrator = None
    _worker_pool = None
    _query_service = None
    get_rate_limit_config.cache_clear()
