"""
Inbound API rate limiting.

Each client IP gets a fixed window (RATELIMIT_INBOUND_* settings). The
limiter lives on ``app.state.limiter``; denied requests raise
``InboundRateLimited``, which the app turns into a 429 with
``Retry-After``. Admitted responses carry ``X-RateLimit-Remaining``.
"""

import math

from fastapi import Depends, Request, Response, status
from fastapi.responses import JSONResponse

from forumwatch.api.dependencies import get_inbound_limiter, get_rate_limit_config
from forumwatch.observability.metrics import get_metrics
from forumwatch.ratelimit.config import RateLimitConfig
from forumwatch.ratelimit.limiter import WindowRateLimiter

ANONYMOUS_CLIENT = "anonymous"


class InboundRateLimited(Exception):
    """A client used up its inbound window."""

    def __init__(self, client: str, retry_after: int):
        super().__init__(f"{client} is rate limited for {retry_after}s")
        self.client = client
        self.retry_after = retry_after


async def rate_limit_exceeded_handler(request: Request, exc: InboundRateLimited) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Too many requests"},
        headers={
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Remaining": "0",
        },
    )


def get_client_key(request: Request) -> str:
    """Client IP: first X-Forwarded-For hop, then X-Real-IP, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS_CLIENT


async def enforce_inbound_limit(
    request: Request,
    response: Response,
    limiter: WindowRateLimiter = Depends(get_inbound_limiter),
    config: RateLimitConfig = Depends(get_rate_limit_config),
) -> None:
    """Route dependency: admit the request or raise InboundRateLimited."""
    if not config.inbound_enabled:
        return

    client = get_client_key(request)
    decision = limiter.try_acquire(
        client,
        config.inbound_window_seconds,
        config.inbound_max_requests,
    )
    if not decision.allowed:
        get_metrics().record_rate_limited("inbound")
        retry_after = math.ceil(decision.retry_after(limiter.now()))
        raise InboundRateLimited(client, max(1, retry_after))

    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
