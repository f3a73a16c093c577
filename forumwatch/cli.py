"""
Command-line interface for forumwatch.

Usage:
    forumwatch serve                 # API server (polls in-process by default)
    forumwatch poll                  # Polling loop only
    forumwatch refresh uniswap aave  # One-off refresh, prints the report
    forumwatch sources --category ai # List registered sources
"""

import asyncio
import json
import signal

import click

from forumwatch.config.settings import get_settings
from forumwatch.observability.logging import setup_logging
from forumwatch.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """forumwatch - multi-source forum polling cache."""
    setup_logging(level="DEBUG" if debug else None)


@main.command()
@click.option("--host", default=None, help="API host")
@click.option("--port", default=None, type=int, help="API port")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def serve(host: str | None, port: int | None, reload: bool, metrics: bool) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    if metrics and settings.metrics_enabled:
        get_metrics().start_server()
        click.echo(f"Metrics available on http://localhost:{settings.metrics_port}/metrics")

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "forumwatch.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
@click.option("--interval", default=None, type=int, help="Seconds between cycles")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def poll(interval: int | None, metrics: bool) -> None:
    """Run the polling loop without the API."""
    from forumwatch.api.dependencies import cleanup_dependencies, get_orchestrator
    from forumwatch.services.polling_service import PollingService

    async def run():
        if metrics and get_settings().metrics_enabled:
            get_metrics().start_server()

        service = PollingService(await get_orchestrator(), poll_interval=interval)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        try:
            await service.start()
        finally:
            await cleanup_dependencies()

    asyncio.run(run())


@main.command()
@click.argument("source_ids", nargs=-1)
@click.option("--timeout", default=60.0, type=float, help="Seconds to wait for the batch")
def refresh(source_ids: tuple[str, ...], timeout: float) -> None:
    """Refresh sources once and print the report.

    With no SOURCE_IDS, refreshes every source that is due.
    """
    from forumwatch.cache.store import CacheStore
    from forumwatch.ingestion.config import FetchConfig
    from forumwatch.ingestion.fetcher import Fetcher, build_adapters
    from forumwatch.ratelimit.config import RateLimitConfig
    from forumwatch.refresh.orchestrator import RefreshOrchestrator
    from forumwatch.sources.registry import load_registry

    settings = get_settings()

    async def run():
        registry = load_registry(settings.sources_file)
        store = CacheStore()
        fetch_config = FetchConfig()

        async with Fetcher(
            build_adapters(settings, fetch_config),
            config=fetch_config,
            rate_limit_config=RateLimitConfig(),
            user_agent=settings.user_agent,
        ) as fetcher:
            orchestrator = RefreshOrchestrator(registry, store, fetcher)
            if source_ids:
                return await orchestrator.refresh_now(source_ids, timeout=timeout)
            return await orchestrator.refresh_due_sources()

    report = asyncio.run(run())
    click.echo(json.dumps(report.to_dict(), indent=2))

    if report.failed:
        click.echo(
            click.style(f"{len(report.failed)} source(s) failed", fg="yellow"),
            err=True,
        )


@main.command()
@click.option("--category", default=None, help="Filter by category tag")
@click.option("--tier", default=None, type=click.IntRange(1, 3), help="Filter by tier")
@click.option("--all", "show_all", is_flag=True, help="Include disabled sources")
def sources(category: str | None, tier: int | None, show_all: bool) -> None:
    """List registered sources."""
    from forumwatch.sources.registry import load_registry

    registry = load_registry(get_settings().sources_file)
    rows = registry.all() if show_all else registry.enabled()
    if category:
        rows = [s for s in rows if s.category_tag == category]
    if tier:
        rows = [s for s in rows if s.tier == tier]

    for s in rows:
        status = "" if s.enabled else click.style(" (disabled)", fg="red")
        click.echo(
            f"{s.id:<28} {s.source_kind.value:<20} {s.category_tag:<8} "
            f"tier {s.tier}  {s.domain}{status}"
        )
    click.echo(f"\n{len(rows)} source(s)")


if __name__ == "__main__":
    main()
