"""
Structured logging configuration using structlog.

Services and the API log through structlog; the lower layers (fetcher,
cache, orchestrator, adapters) use stdlib ``logging``. Both end up in the
same handler: stdlib records are passed through structlog's
``ProcessorFormatter`` so every line has the same shape and carries the
bound context (request_id, source_id).

Output goes to stderr so commands that print JSON on stdout stay parseable.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from forumwatch.config.settings import get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")

# Handler installed by the last setup_logging() call; replaced on reconfigure
_handler: logging.Handler | None = None


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (defaults to LOG_LEVEL)
        json_output: Render JSON lines instead of console output
            (defaults to True in production)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Refresh completed", source_id="uniswap", topics=30)
    """
    settings = get_settings()
    level = level or settings.log_level
    if json_output is None:
        json_output = settings.is_production

    shared = _shared_processors()
    renderer: Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    final: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_output:
        final.append(structlog.processors.format_exc_info)
    final.append(renderer)

    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=final,
        )
    )
    root.addHandler(_handler)
    root.setLevel(getattr(logging, level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind key-value pairs to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
