"""Long-running services and the read façade."""

from forumwatch.services.polling_service import PollingService
from forumwatch.services.query_service import CacheStats, QueryService, SourceHealth

__all__ = ["CacheStats", "PollingService", "QueryService", "SourceHealth"]
