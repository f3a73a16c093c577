"""Source registry loaded from the bundled JSON list (or an override file)."""

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from forumwatch.sources.schemas import SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

_DEFAULT_FILE = Path(__file__).parent / "data" / "sources.json"


def _parse_entry(entry: dict) -> SourceDescriptor:
    """Convert a JSON registry entry to a SourceDescriptor."""
    return SourceDescriptor(
        id=entry["id"],
        display_name=entry.get("display_name", entry["id"]),
        base_url=entry["base_url"],
        source_kind=SourceKind(entry.get("source_kind", SourceKind.DISCOURSE.value)),
        category_tag=entry.get("category_tag", "other"),
        tier=entry.get("tier", 2),
        enabled=entry.get("enabled", True),
        repo_ref=entry.get("repo_ref"),
        snapshot_space=entry.get("snapshot_space"),
        api_url=entry.get("api_url"),
        category_id=entry.get("category_id"),
        logo_url=entry.get("logo_url"),
        description=entry.get("description", ""),
    )


class SourceRegistry:
    """Immutable, ordered collection of source descriptors keyed by id."""

    def __init__(self, sources: Iterable[SourceDescriptor]) -> None:
        self._sources: dict[str, SourceDescriptor] = {}
        for source in sources:
            if source.id in self._sources:
                raise ValueError(f"Duplicate source id in registry: {source.id}")
            self._sources[source.id] = source

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[SourceDescriptor]:
        return iter(self._sources.values())

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def get(self, source_id: str) -> SourceDescriptor | None:
        return self._sources.get(source_id)

    def all(self) -> list[SourceDescriptor]:
        return list(self._sources.values())

    def enabled(self) -> list[SourceDescriptor]:
        return [s for s in self._sources.values() if s.enabled]

    def by_category(self, category_tag: str) -> list[SourceDescriptor]:
        return [s for s in self.enabled() if s.category_tag == category_tag]

    def categories(self) -> list[str]:
        return sorted({s.category_tag for s in self._sources.values()})

    def resolve(self, source_ids: Iterable[str]) -> tuple[list[SourceDescriptor], list[str]]:
        """Split ids into known descriptors and unknown ids, preserving order."""
        known: list[SourceDescriptor] = []
        unknown: list[str] = []
        for source_id in source_ids:
            source = self._sources.get(source_id)
            if source is None:
                unknown.append(source_id)
            else:
                known.append(source)
        return known, unknown

    @classmethod
    def from_file(cls, path: Path | str) -> "SourceRegistry":
        with open(path, encoding="utf-8") as f:
            entries = json.load(f)
        registry = cls(_parse_entry(e) for e in entries)
        logger.info("Loaded %d sources from %s", len(registry), path)
        return registry


def load_registry(path: Path | str | None = None) -> SourceRegistry:
    """Load the registry from ``path`` or the bundled default list."""
    return SourceRegistry.from_file(path or _DEFAULT_FILE)
