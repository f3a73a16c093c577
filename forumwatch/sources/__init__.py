"""Sources: static registry of polled forums and external discussion APIs."""

from forumwatch.sources.registry import SourceRegistry, load_registry
from forumwatch.sources.schemas import SourceDescriptor, SourceKind

__all__ = [
    "SourceDescriptor",
    "SourceKind",
    "SourceRegistry",
    "load_registry",
]
