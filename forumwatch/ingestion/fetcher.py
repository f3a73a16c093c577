"""
Single-source fetcher.

One ``fetch()`` is one logical poll of one upstream: outbound throttling,
the HTTP call (with retries), defunct detection and adapter parsing. The
outcome is either a list of topics or a ``FetchError`` subclass; the
Fetcher never touches the cache.

Outbound throttling is re-checked before every HTTP attempt, including
retries and redirect hops, so a retry storm cannot exceed the per-domain
budget. A fetch slot, when given, is held only while an admitted attempt
is on the wire.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx

from forumwatch.config.settings import Settings, get_settings
from forumwatch.ingestion.base_adapter import AdapterRequest, SourceAdapter
from forumwatch.ingestion.config import FetchConfig
from forumwatch.ingestion.discourse_adapter import DiscourseAdapter
from forumwatch.ingestion.errors import (
    DefunctSourceError,
    FetchError,
    RateLimitedError,
)
from forumwatch.ingestion.github_adapter import GitHubDiscussionsAdapter
from forumwatch.ingestion.http_client import Admit, HTTPClient, TokenRotator, UpstreamHTTPError
from forumwatch.ingestion.research_adapter import ResearchForumAdapter
from forumwatch.ingestion.schemas import Topic
from forumwatch.ingestion.snapshot_adapter import SnapshotAdapter
from forumwatch.observability.metrics import MetricsCollector, get_metrics
from forumwatch.ratelimit.config import RateLimitConfig
from forumwatch.ratelimit.limiter import WindowRateLimiter
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
Deadline = Callable[[], float | None]


def build_adapters(
    settings: Settings | None = None,
    config: FetchConfig | None = None,
) -> dict[SourceKind, SourceAdapter]:
    """Default adapter per source kind, configured from settings."""
    settings = settings or get_settings()
    config = config or FetchConfig()

    adapters: list[SourceAdapter] = [
        DiscourseAdapter(),
        GitHubDiscussionsAdapter(
            tokens=TokenRotator.from_csv(settings.github_token),
            page_size=config.github_limit,
        ),
        SnapshotAdapter(
            api_key=settings.snapshot_api_key,
            page_size=config.snapshot_limit,
        ),
        ResearchForumAdapter(page_size=config.research_limit),
    ]
    return {adapter.kind: adapter for adapter in adapters}


def _host(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


class Fetcher:
    """
    Fetches and normalizes one source at a time.

    Must be used as an async context manager (it owns the HTTP client):

        async with Fetcher(build_adapters(), limiter=outbound) as fetcher:
            topics = await fetcher.fetch(source)

    Args:
        adapters: One adapter per source kind.
        limiter: Outbound limiter keyed by upstream domain.
        config: Timeouts, retry policy and redirect limit.
        rate_limit_config: Outbound window and budget.
        metrics: Prometheus collector (global one if None).
        http_client: Pre-built client; one is created from ``config`` if None.
        sleep: Awaitable used for limiter waits.
        monotonic: Clock that deadlines are measured against.
    """

    def __init__(
        self,
        adapters: Mapping[SourceKind, SourceAdapter] | Iterable[SourceAdapter],
        limiter: WindowRateLimiter | None = None,
        config: FetchConfig | None = None,
        rate_limit_config: RateLimitConfig | None = None,
        metrics: MetricsCollector | None = None,
        http_client: HTTPClient | None = None,
        user_agent: str | None = None,
        sleep: Sleep = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(adapters, Mapping):
            self._adapters = dict(adapters)
        else:
            self._adapters = {adapter.kind: adapter for adapter in adapters}

        self._config = config or FetchConfig()
        self._rate_config = rate_limit_config or RateLimitConfig()
        self._limiter = limiter or WindowRateLimiter(
            name="outbound", max_keys=self._rate_config.max_keys
        )
        self._metrics = metrics or get_metrics()
        self._http = http_client or HTTPClient(
            retry=self._config.retry_policy(),
            timeout=self._config.timeout_seconds,
            user_agent=user_agent,
        )
        self._sleep = sleep
        self._monotonic = monotonic

    async def __aenter__(self) -> "Fetcher":
        await self._http.__aenter__()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self._http.__aexit__(exc_type, exc_val, exc_tb)

    @property
    def limiter(self) -> WindowRateLimiter:
        return self._limiter

    def adapter_for(self, source: SourceDescriptor) -> SourceAdapter:
        adapter = self._adapters.get(source.source_kind)
        if adapter is None:
            raise FetchError(f"{source.id}: no adapter for {source.source_kind.value}")
        return adapter

    async def fetch(
        self,
        source: SourceDescriptor,
        deadline: Deadline | None = None,
        slots: asyncio.Semaphore | None = None,
    ) -> list[Topic]:
        """
        Poll one source.

        Args:
            source: Source to poll.
            deadline: Returns the absolute time on the ``monotonic`` clock
                after which nobody is waiting any more (None: no limit). It
                is re-read before every limiter check, so a deadline that
                moves while the fetch runs is honoured. Limiter waits that
                would end past it fail fast with RateLimitedError.
            slots: Held around each HTTP attempt only, never across limiter
                waits or retry backoff.

        Raises:
            FetchError: Any failure, classified by subclass.
        """
        kind = source.source_kind.value
        start = time.perf_counter()
        try:
            adapter = self.adapter_for(source)
            payload = await self._request_json(
                source, adapter, adapter.build_request(source), deadline, slots
            )
            topics = self._parse(source, adapter, adapter.extract_items(source, payload))
        except FetchError as e:
            self._metrics.record_fetch(kind, e.kind.value, latency=time.perf_counter() - start)
            logger.info("Fetch %s failed (%s): %s", source.id, e.kind.value, e)
            raise

        latency = time.perf_counter() - start
        self._metrics.record_fetch(kind, "success", latency=latency, topic_count=len(topics))
        logger.debug("Fetched %d topics from %s in %.2fs", len(topics), source.id, latency)
        return topics

    async def search(
        self,
        source: SourceDescriptor,
        query: str,
        deadline: Deadline | None = None,
        slots: asyncio.Semaphore | None = None,
    ) -> list[Topic]:
        """
        Run an upstream search on one source, throttled like a poll.

        Raises:
            FetchError: The source kind cannot search, or the call failed.
        """
        adapter = self.adapter_for(source)
        request = adapter.build_search_request(source, query)
        if request is None:
            raise FetchError(f"{source.id}: {source.source_kind.value} sources cannot be searched")

        payload = await self._request_json(source, adapter, request, deadline, slots)
        topics = self._parse(source, adapter, adapter.extract_search_items(source, payload))
        logger.debug("Search %r on %s matched %d topics", query, source.id, len(topics))
        return topics

    def _parse(
        self,
        source: SourceDescriptor,
        adapter: SourceAdapter,
        items: list[Any],
    ) -> list[Topic]:
        result = adapter.parse_items(source, items)
        if result.malformed:
            self._metrics.record_malformed(source.source_kind.value, result.malformed)
        return result.topics

    async def _request_json(
        self,
        source: SourceDescriptor,
        adapter: SourceAdapter,
        request: AdapterRequest,
        deadline: Deadline | None,
        slots: asyncio.Semaphore | None,
    ) -> Any:
        admit = self._admission(source, deadline, slots)

        url = request.url
        for _ in range(self._config.max_redirects + 1):
            response = await self._send(source, adapter, request, url, admit)
            if not 300 <= response.status_code < 400:
                break

            location = response.headers.get("location")
            if not location:
                raise DefunctSourceError(
                    f"{source.id}: HTTP {response.status_code} without Location",
                    status_code=response.status_code,
                )
            target = urljoin(url, location)
            if _host(target) != _host(url):
                raise DefunctSourceError(
                    f"{source.id}: moved or shut down (redirects to {target})",
                    status_code=response.status_code,
                    redirect_url=target,
                )
            logger.debug("Following same-host redirect %s -> %s", url, target)
            url = target
        else:
            raise DefunctSourceError(
                f"{source.id}: more than {self._config.max_redirects} redirects",
                redirect_url=url,
            )

        content_type = response.headers.get("content-type", "")
        if "json" not in content_type.lower():
            raise DefunctSourceError(
                f"{source.id}: expected JSON, got {content_type or 'no content type'}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise DefunctSourceError(
                f"{source.id}: response body is not valid JSON",
                status_code=response.status_code,
            ) from e

    async def _send(
        self,
        source: SourceDescriptor,
        adapter: SourceAdapter,
        request: AdapterRequest,
        url: str,
        admit: Admit,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                request.method,
                url,
                params=request.params,
                json=request.json_body,
                headers=request.headers,
                tokens=request.tokens,
                admit=admit,
            )
        except UpstreamHTTPError as e:
            raise adapter.classify_http_error(source, e) from e

    def _admission(
        self,
        source: SourceDescriptor,
        deadline: Deadline | None,
        slots: asyncio.Semaphore | None,
    ) -> Admit:
        """Build the per-fetch gate every HTTP attempt runs inside."""
        kind = source.source_kind.value
        window = self._rate_config.outbound_window_seconds
        budget = self._rate_config.outbound_max_requests
        max_wait = self._config.max_rate_limit_wait_seconds
        waited = 0.0

        @asynccontextmanager
        async def admit(attempt: int) -> AsyncIterator[None]:
            nonlocal waited
            while True:
                decision = self._limiter.try_acquire(source.domain, window, budget)
                if decision.allowed:
                    break

                self._metrics.record_rate_limited("outbound")
                wait = decision.retry_after(self._limiter.now())
                limit = deadline() if deadline is not None else None
                if limit is not None and self._monotonic() + wait > limit:
                    raise RateLimitedError(
                        f"{source.id}: outbound limit for {source.domain} "
                        f"resets in {wait:.1f}s, past the deadline",
                        retry_after=wait,
                    )
                if waited + wait > max_wait:
                    raise RateLimitedError(
                        f"{source.id}: waited {waited:.1f}s on outbound limit "
                        f"for {source.domain}",
                        retry_after=wait,
                    )

                logger.debug(
                    "Outbound limit for %s reached, attempt %d of %s waits %.2fs",
                    source.domain,
                    attempt + 1,
                    source.id,
                    wait,
                )
                await self._sleep(wait)
                waited += wait

            self._metrics.record_attempt(kind)
            if slots is None:
                yield
                return
            async with slots:
                yield

        return admit
