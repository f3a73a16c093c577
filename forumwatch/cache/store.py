"""
In-process cache of per-source topic batches.

Only the store mutates entries. Every write replaces a whole frozen
``CacheEntry`` under a lock, so readers never observe a half-applied
refresh and never wait on network I/O.

Ordering within a source is enforced with sequence tickets: a refresh
takes a ticket from ``begin()`` before fetching and passes it to
``commit``/``commit_error``. A commit whose ticket is older than the last
applied one is discarded, so a slow refresh can never overwrite the result
of a newer one.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone

from forumwatch.cache.config import CacheConfig
from forumwatch.cache.schemas import CacheEntry, ErrorInfo
from forumwatch.ingestion.schemas import Topic

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_topics(topics: Iterable[Topic]) -> tuple[Topic, ...]:
    """Keep the first topic for each ref_id, preserving order."""
    seen: set[str] = set()
    unique: list[Topic] = []
    for topic in topics:
        if topic.ref_id in seen:
            continue
        seen.add(topic.ref_id)
        unique.append(topic)
    return tuple(unique)


class CacheStore:
    """
    Mutex-guarded map of source id to CacheEntry.

    Capacity-bounded: when a write adds an entry beyond ``max_entries``,
    the entry with the oldest ``fetched_at`` (never-fetched entries first)
    is evicted.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._tickets: dict[str, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._entries

    def get(self, source_id: str) -> CacheEntry:
        """Current entry, or an empty one for a source never committed."""
        with self._lock:
            return self._entries.get(source_id) or CacheEntry(source_id=source_id)

    def get_many(self, source_ids: Iterable[str]) -> list[CacheEntry]:
        with self._lock:
            return [
                self._entries.get(sid) or CacheEntry(source_id=sid)
                for sid in source_ids
            ]

    def snapshot_all(self) -> list[CacheEntry]:
        """Point-in-time copy of every entry."""
        with self._lock:
            return list(self._entries.values())

    def begin(self, source_id: str) -> int:
        """Issue the next sequence ticket for a refresh of ``source_id``."""
        with self._lock:
            ticket = self._tickets.get(source_id, 0) + 1
            self._tickets[source_id] = ticket
            return ticket

    def commit(
        self,
        source_id: str,
        topics: Iterable[Topic],
        sequence: int | None = None,
    ) -> CacheEntry | None:
        """
        Replace the source's topics after a successful fetch.

        Clears ``last_error`` and resets defunct strikes. ``is_defunct``
        stays as it was.

        Returns:
            The new entry, or None if the commit was discarded as stale.
        """
        unique = dedupe_topics(topics)
        with self._lock:
            current = self._entries.get(source_id) or CacheEntry(source_id=source_id)
            sequence = self._accept(current, sequence)
            if sequence is None:
                return None

            now = self._clock()
            fetched_at = now
            if current.fetched_at is not None and current.fetched_at > now:
                fetched_at = current.fetched_at

            entry = replace(
                current,
                topics=unique,
                fetched_at=fetched_at,
                last_error=None,
                sequence=sequence,
                defunct_strikes=0,
                last_attempt_at=now,
            )
            self._put(entry)
            return entry

    def commit_error(
        self,
        source_id: str,
        error: ErrorInfo,
        is_defunct: bool = False,
        sequence: int | None = None,
    ) -> CacheEntry | None:
        """
        Record a failed fetch. Topics and ``fetched_at`` are kept.

        A defunct signal adds a strike; any other error resets the count.
        The entry becomes defunct once strikes reach the confirmation
        threshold and stays defunct until ``clear_defunct``.

        Returns:
            The new entry, or None if the commit was discarded as stale.
        """
        with self._lock:
            current = self._entries.get(source_id) or CacheEntry(source_id=source_id)
            sequence = self._accept(current, sequence)
            if sequence is None:
                return None

            strikes = current.defunct_strikes + 1 if is_defunct else 0
            defunct = current.is_defunct or strikes >= self._config.defunct_confirmations
            if defunct and not current.is_defunct:
                logger.warning(
                    "Source %s marked defunct after %d consecutive signals: %s",
                    source_id,
                    strikes,
                    error.message,
                )

            entry = replace(
                current,
                last_error=error,
                is_defunct=defunct,
                sequence=sequence,
                defunct_strikes=strikes,
                last_attempt_at=self._clock(),
            )
            self._put(entry)
            return entry

    def clear_defunct(self, source_id: str) -> bool:
        """Admin action: make a defunct source eligible for refresh again."""
        with self._lock:
            current = self._entries.get(source_id)
            if current is None or not (current.is_defunct or current.defunct_strikes):
                return False
            self._entries[source_id] = replace(current, is_defunct=False, defunct_strikes=0)
        logger.info("Cleared defunct state for %s", source_id)
        return True

    def state_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.snapshot_all():
            counts[entry.state] = counts.get(entry.state, 0) + 1
        return counts

    def _accept(self, current: CacheEntry, sequence: int | None) -> int | None:
        """Resolve the commit's ticket; None means it is stale. Caller holds the lock."""
        if sequence is None:
            sequence = max(self._tickets.get(current.source_id, 0), current.sequence) + 1
            self._tickets[current.source_id] = sequence
            return sequence
        if sequence < current.sequence:
            logger.debug(
                "Discarding stale commit for %s (ticket %d < %d)",
                current.source_id,
                sequence,
                current.sequence,
            )
            return None
        return sequence

    def _put(self, entry: CacheEntry) -> None:
        """Store ``entry`` and enforce capacity. Caller holds the lock."""
        is_new = entry.source_id not in self._entries
        self._entries[entry.source_id] = entry
        if not is_new or len(self._entries) <= self._config.max_entries:
            return

        victim = min(
            (e for e in self._entries.values() if e.source_id != entry.source_id),
            key=lambda e: e.fetched_at or _EPOCH,
        )
        del self._entries[victim.source_id]
        self._tickets.pop(victim.source_id, None)
        logger.info("Cache full (%d entries), evicted %s", self._config.max_entries, victim.source_id)
