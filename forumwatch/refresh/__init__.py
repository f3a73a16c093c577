"""Refresh scheduling: due-source selection, single-flight fan-out, background workers."""

from forumwatch.refresh.backoff import CycleBackoff
from forumwatch.refresh.config import RefreshConfig
from forumwatch.refresh.orchestrator import RefreshOrchestrator, RefreshReport, SourceOutcome
from forumwatch.refresh.worker_pool import RefreshWorkerPool

__all__ = [
    "CycleBackoff",
    "RefreshConfig",
    "RefreshOrchestrator",
    "RefreshReport",
    "RefreshWorkerPool",
    "SourceOutcome",
]
