"""
Fetch error taxonomy.

Every failure a single source fetch can produce is a ``FetchError``
subclass carrying a ``kind`` string. The refresh orchestrator catches
``FetchError`` at its boundary and records ``kind`` in the cache entry;
nothing below it swallows these errors.
"""

from enum import Enum


class FetchErrorKind(str, Enum):
    """Recorded kinds of fetch failure."""

    TRANSIENT = "transient"
    DEFUNCT = "defunct"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    AUTH = "auth"
    MALFORMED = "malformed"
    UNEXPECTED = "unexpected"


class FetchError(Exception):
    """Base exception for source fetch failures."""

    kind: FetchErrorKind = FetchErrorKind.UNEXPECTED

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, network error, 5xx or 429 after retries were exhausted."""

    kind = FetchErrorKind.TRANSIENT


class DefunctSourceError(FetchError):
    """Off-host redirect, non-JSON body, or missing schema marker."""

    kind = FetchErrorKind.DEFUNCT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        redirect_url: str | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.redirect_url = redirect_url


class RateLimitedError(FetchError):
    """Local outbound limiter would delay past the caller's deadline."""

    kind = FetchErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamRateLimitError(FetchError):
    """Upstream reported its quota exhausted (GitHub 403 with remaining=0)."""

    kind = FetchErrorKind.UPSTREAM_RATE_LIMITED


class AuthError(FetchError):
    """Missing or rejected credentials."""

    kind = FetchErrorKind.AUTH
