"""
Prometheus metrics for monitoring the polling cache.

Defines and exposes metrics for:
- Upstream fetch outcomes and latency
- Outbound and inbound rate-limit denials
- In-flight refreshes
- Cache entry health

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from forumwatch.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for upstream latency histograms (in seconds)
LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)

CACHE_STATES = ("ok", "error", "defunct", "not_cached")


class MetricsCollector:
    """
    Prometheus metrics collector for the forumwatch cache.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_fetch("discourse-forum", "success", latency=0.42)
        metrics.record_rate_limited("outbound")
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """Initialize Prometheus metrics."""
        self.fetches = Counter(
            "forumwatch_fetches_total",
            "Total upstream fetches by outcome",
            ["source_kind", "outcome"],  # outcome: success, transient, defunct, ...
            registry=registry,
        )

        self.fetch_attempts = Counter(
            "forumwatch_fetch_attempts_total",
            "Total outbound HTTP attempts including retries",
            ["source_kind"],
            registry=registry,
        )

        self.fetch_latency = Histogram(
            "forumwatch_fetch_latency_seconds",
            "Time to fetch and parse one source",
            ["source_kind"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.topics_fetched = Counter(
            "forumwatch_topics_fetched_total",
            "Topics returned by upstream fetches",
            ["source_kind"],
            registry=registry,
        )

        self.malformed_topics = Counter(
            "forumwatch_malformed_topics_total",
            "Upstream items skipped because required fields were missing",
            ["source_kind"],
            registry=registry,
        )

        self.rate_limited = Counter(
            "forumwatch_rate_limited_total",
            "Requests denied by a local rate limiter",
            ["direction"],  # inbound, outbound
            registry=registry,
        )

        self.refreshes_in_flight = Gauge(
            "forumwatch_refreshes_in_flight",
            "Source refreshes currently running",
            registry=registry,
        )

        self.single_flight_joins = Counter(
            "forumwatch_single_flight_joins_total",
            "Refresh requests that attached to an in-flight refresh",
            registry=registry,
        )

        self.cache_entries = Gauge(
            "forumwatch_cache_entries",
            "Cache entries by state",
            ["state"],
            registry=registry,
        )

        self.refresh_cycle_latency = Histogram(
            "forumwatch_refresh_cycle_latency_seconds",
            "Time to run one refresh batch",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_fetch(
        self,
        source_kind: str,
        outcome: str,
        latency: float | None = None,
        topic_count: int = 0,
    ) -> None:
        """
        Record the outcome of one source fetch.

        Args:
            source_kind: Adapter kind (discourse-forum, snapshot-space, ...)
            outcome: success or an error kind
            latency: Optional fetch latency in seconds
            topic_count: Topics returned on success
        """
        self.fetches.labels(source_kind=source_kind, outcome=outcome).inc()
        if latency is not None:
            self.fetch_latency.labels(source_kind=source_kind).observe(latency)
        if topic_count:
            self.topics_fetched.labels(source_kind=source_kind).inc(topic_count)

    def record_attempt(self, source_kind: str) -> None:
        """Record one outbound HTTP attempt."""
        self.fetch_attempts.labels(source_kind=source_kind).inc()

    def record_malformed(self, source_kind: str, count: int = 1) -> None:
        """Record skipped malformed upstream items."""
        self.malformed_topics.labels(source_kind=source_kind).inc(count)

    def record_rate_limited(self, direction: str) -> None:
        """Record a local rate-limit denial (inbound or outbound)."""
        self.rate_limited.labels(direction=direction).inc()

    def set_cache_state(self, counts: dict[str, int]) -> None:
        """
        Set cache entry gauges.

        Args:
            counts: state -> number of entries. States left out are set to 0.
        """
        for state in dict.fromkeys((*CACHE_STATES, *counts)):
            self.cache_entries.labels(state=state).set(counts.get(state, 0))


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
