"""Fixed-window rate limiting for inbound clients and outbound upstream domains."""

from forumwatch.ratelimit.config import RateLimitConfig
from forumwatch.ratelimit.limiter import RateLimitDecision, WindowRateLimiter

__all__ = ["RateLimitConfig", "RateLimitDecision", "WindowRateLimiter"]
