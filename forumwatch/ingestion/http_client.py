"""
Upstream HTTP transport shared by every source adapter.

``HTTPClient`` owns the retry policy and credential rotation. The Fetcher
passes an ``admit`` gate that every try runs inside: it waits on the
outbound rate limiter and holds a fetch slot for the duration of the HTTP
call only, so retries are throttled like first attempts and backoff sleeps
never occupy a slot.

Redirects are never followed here: a 3xx is handed back to the caller,
which decides whether the move is benign or means the source is gone.
"""

import asyncio
import itertools
import logging
import random
from collections.abc import Callable, Iterable
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

Admit = Callable[[int], AbstractAsyncContextManager[Any]]

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


class TokenRotator:
    """
    Round-robin over one or more credentials for the same upstream.

    Several GitHub tokens can share the polling load this way; each
    attempt (retries included) takes the next token.

    Example:
        tokens = TokenRotator.from_csv(settings.github_token)
        tokens.auth_headers()  # {"Authorization": "Bearer ghp_..."}
    """

    def __init__(
        self,
        tokens: Iterable[str],
        header: str = "Authorization",
        scheme: str | None = "Bearer",
    ) -> None:
        self.tokens = [t for t in tokens if t]
        if not self.tokens:
            raise ValueError("TokenRotator needs at least one token")
        self.header = header
        self.scheme = scheme
        self._cycle = itertools.cycle(self.tokens)

    @classmethod
    def from_csv(cls, value: str | None, **kwargs: Any) -> "TokenRotator | None":
        """Rotator over a comma-separated setting, or None when it is empty."""
        tokens = [t.strip() for t in (value or "").split(",") if t.strip()]
        if not tokens:
            return None
        return cls(tokens, **kwargs)

    def __len__(self) -> int:
        return len(self.tokens)

    def auth_headers(self) -> dict[str, str]:
        token = next(self._cycle)
        return {self.header: f"{self.scheme} {token}" if self.scheme else token}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts and backoff for one upstream call.

    delay = min(max_delay, base_delay * 2^attempt) plus up to ``jitter`` of
    itself. A 429 waits ``rate_limit_multiplier`` times longer, and never
    less than the upstream's Retry-After (still capped at ``max_delay``).
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1
    rate_limit_multiplier: float = 5.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay(
        self,
        attempt: int,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> float:
        delay = self.base_delay * 2**attempt
        if status_code == 429:
            delay = max(delay * self.rate_limit_multiplier, retry_after or 0.0)
        delay = min(delay, self.max_delay)
        return delay * (1 + self.jitter * random.random())


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After in seconds. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class UpstreamHTTPError(Exception):
    """
    The upstream could not be reached, or answered with an error status.

    ``status_code`` is None for transport failures. ``headers`` is always
    set so adapters can inspect quota headers without None checks.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: httpx.Headers | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers = headers if headers is not None else httpx.Headers()
        self.body = body


class HTTPClient:
    """
    Async HTTP client with retries, token rotation and a per-attempt gate.

    Timeouts, connection failures, 429 and 5xx are retried per the
    ``RetryPolicy``. Any other status >= 400, or a retryable failure on the
    last attempt, raises ``UpstreamHTTPError``. 1xx-3xx are returned.

    Example:
        async with HTTPClient(RetryPolicy(max_retries=2)) as client:
            response = await client.request(
                "GET",
                "https://gov.uniswap.org/latest.json",
                admit=gate,
            )
    """

    def __init__(
        self,
        retry: RetryPolicy | None = None,
        timeout: float = 15.0,
        user_agent: str | None = None,
    ):
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self.user_agent = user_agent
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=False,
            headers={"User-Agent": self.user_agent} if self.user_agent else None,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        tokens: TokenRotator | None = None,
        admit: Admit | None = None,
    ) -> httpx.Response:
        """
        Send one logical request, retrying as the policy allows.

        Each try runs inside ``admit(attempt)``; an exception raised while
        entering it aborts the request untouched. Backoff happens outside
        the gate.
        """
        if self._client is None:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempt = 0
        while True:
            final = attempt + 1 >= self.retry.max_attempts

            request_headers = dict(headers or {})
            if tokens is not None:
                request_headers.update(tokens.auth_headers())

            response: httpx.Response | None = None
            failure = ""
            async with admit(attempt) if admit is not None else nullcontext():
                try:
                    response = await self._client.request(
                        method,
                        url,
                        params=params or None,
                        json=json,
                        headers=request_headers,
                    )
                except RETRYABLE_ERRORS as e:
                    if final:
                        raise UpstreamHTTPError(
                            f"{method} {url} failed after {attempt + 1} attempts: "
                            f"{type(e).__name__}: {e}"
                        ) from e
                    failure = type(e).__name__
                except httpx.HTTPError as e:
                    raise UpstreamHTTPError(f"{method} {url} failed: {e}") from e

            if response is None:
                await self._back_off(url, attempt, failure)
                attempt += 1
                continue

            status = response.status_code
            if status in RETRYABLE_STATUSES and not final:
                await self._back_off(
                    url,
                    attempt,
                    f"HTTP {status}",
                    status_code=status,
                    retry_after=parse_retry_after(response.headers.get("retry-after")),
                )
                attempt += 1
                continue

            if status >= 400:
                raise UpstreamHTTPError(
                    f"{method} {url} returned HTTP {status} (attempt {attempt + 1})",
                    status_code=status,
                    headers=response.headers,
                    body=response.text,
                )
            return response

    async def _back_off(
        self,
        url: str,
        attempt: int,
        reason: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        delay = self.retry.delay(attempt, status_code=status_code, retry_after=retry_after)
        logger.warning(
            "%s from %s, attempt %d/%d, retrying in %.2fs",
            reason,
            url,
            attempt + 1,
            self.retry.max_attempts,
            delay,
        )
        await asyncio.sleep(delay)
