"""
FastAPI application factory.

Served with ``uvicorn forumwatch.api.app:create_app --factory``. Unless
polling is disabled, the lifespan runs the PollingService beside the API so
one process both keeps the cache warm and serves it.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forumwatch import __version__
from forumwatch.api.dependencies import (
    cleanup_dependencies,
    create_inbound_limiter,
    create_polling_service,
)
from forumwatch.api.rate_limit import InboundRateLimited, rate_limit_exceeded_handler
from forumwatch.api.routes import cache, discussions, health
from forumwatch.config.settings import get_settings
from forumwatch.observability.logging import bind_context, clear_context

logger = structlog.get_logger(__name__)

DESCRIPTION = """
Cached discussions from Discourse forums, GitHub Discussions, Snapshot
spaces and research forums. Reads never wait on an upstream.

`/cache` routes take an `X-API-KEY` header; public routes are rate limited
per client IP.
"""

TAGS = [
    {"name": "health", "description": "Liveness and per-source health"},
    {"name": "discussions", "description": "Briefs, per-source discussions and digests"},
    {"name": "cache", "description": "Cache administration (admin key required)"},
]


def _lifespan(polling: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        poller = None
        task: asyncio.Task | None = None
        if polling:
            poller = await create_polling_service()
            task = asyncio.create_task(poller.start(), name="forumwatch-polling")
        logger.info("API started", version=__version__, polling=polling)

        try:
            yield
        finally:
            if poller is not None:
                await poller.stop()
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await cleanup_dependencies()
            logger.info("API stopped")

    return lifespan


async def _request_context(request: Request, call_next):
    """Tag every log line of a request with its id and log one access line."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    bind_context(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
    finally:
        clear_context()


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(enable_polling: bool | None = None) -> FastAPI:
    """
    Build the API.

    Args:
        enable_polling: Run the polling loop in this process. Defaults to
            API_POLLING_ENABLED.
    """
    settings = get_settings()
    polling = settings.api_polling_enabled if enable_polling is None else enable_polling

    app = FastAPI(
        title="forumwatch",
        description=DESCRIPTION,
        version=__version__,
        lifespan=_lifespan(polling),
        openapi_tags=TAGS,
    )

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.middleware("http")(_request_context)
    app.add_exception_handler(Exception, _unhandled)

    app.state.limiter = create_inbound_limiter()
    app.add_exception_handler(InboundRateLimited, rate_limit_exceeded_handler)

    app.include_router(health.router, tags=["health"])
    app.include_router(discussions.router, tags=["discussions"])
    app.include_router(cache.router, tags=["cache"])

    return app
