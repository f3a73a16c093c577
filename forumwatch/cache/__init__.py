"""Process-local cache of per-source topic batches."""

from forumwatch.cache.config import CacheConfig
from forumwatch.cache.schemas import CacheEntry, ErrorInfo
from forumwatch.cache.store import CacheStore

__all__ = ["CacheConfig", "CacheEntry", "CacheStore", "ErrorInfo"]
