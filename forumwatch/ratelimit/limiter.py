"""
Fixed-window rate limiter keyed by client IP or upstream domain.

Counting is delegated to the ``limits`` library (fixed-window strategy over
in-memory storage). Each key gets a window that opens on first use and
admits up to ``max_requests`` calls until it resets. This approximates a
sliding window: a client can burst up to 2x the limit across a window
boundary. Window lengths are whole seconds; fractions round up.

The set of tracked keys is bounded. Every new key that pushes it over
``max_keys`` first drops expired windows, then clears the windows that
reset soonest.
"""

import heapq
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


@lru_cache(maxsize=64)
def _rate_item(window_seconds: float, max_requests: int) -> RateLimitItem:
    return RateLimitItemPerSecond(max_requests, max(1, math.ceil(window_seconds)))


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float) -> float:
        """Seconds until the window resets (0 if already reset)."""
        return max(0.0, self.reset_at - now)


@dataclass
class RateWindow:
    count: int
    reset_at: float


@dataclass
class _Tracked:
    item: RateLimitItem
    reset_at: float


class WindowRateLimiter:
    """
    Thread-safe fixed-window limiter.

    ``try_acquire`` never blocks and never raises; callers decide whether to
    wait, reject, or fail fast based on the returned decision.

    Args:
        name: Label for logs.
        max_keys: Most keys tracked at once.
        clock: Epoch clock used for ``now()``; must agree with the clock the
            storage expires windows by.

    Example:
        limiter = WindowRateLimiter(name="outbound")
        decision = limiter.try_acquire("gov.uniswap.org", 60.0, 20)
        if not decision.allowed:
            await asyncio.sleep(decision.retry_after(limiter.now()))
    """

    def __init__(
        self,
        name: str = "default",
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._max_keys = max_keys
        self._clock = clock
        self._strategy = FixedWindowRateLimiter(MemoryStorage())
        self._tracked: dict[str, _Tracked] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def try_acquire(
        self,
        key: str,
        window_seconds: float,
        max_requests: int,
    ) -> RateLimitDecision:
        """
        Admit or deny one request for ``key``.

        Denied requests do not consume budget, so the number of admitted
        requests in any window never exceeds ``max_requests``.
        """
        item = _rate_item(window_seconds, max_requests)
        with self._lock:
            allowed = self._strategy.test(item, key) and self._strategy.hit(item, key)
            stats = self._strategy.get_window_stats(item, key)

            is_new = key not in self._tracked
            self._tracked[key] = _Tracked(item=item, reset_at=float(stats.reset_time))
            if is_new and len(self._tracked) > self._max_keys:
                self._evict(self._clock(), keep=key)

            return RateLimitDecision(
                allowed=allowed,
                remaining=0 if not allowed else max(0, stats.remaining),
                reset_at=float(stats.reset_time),
            )

    def peek(self, key: str) -> RateWindow | None:
        """Current window for ``key``, or None if untracked or expired."""
        with self._lock:
            tracked = self._tracked.get(key)
            if tracked is None or tracked.reset_at <= self._clock():
                return None
            stats = self._strategy.get_window_stats(tracked.item, key)
            return RateWindow(
                count=tracked.item.amount - stats.remaining,
                reset_at=tracked.reset_at,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracked)

    def _evict(self, now: float, keep: str) -> None:
        """Bring the key set back under capacity. Caller holds the lock."""
        expired = [k for k, t in self._tracked.items() if t.reset_at <= now and k != keep]
        for k in expired:
            del self._tracked[k]

        overflow = len(self._tracked) - self._max_keys
        if overflow <= 0:
            return

        candidates = ((t.reset_at, k) for k, t in self._tracked.items() if k != keep)
        for _, k in heapq.nsmallest(overflow, candidates):
            self._strategy.clear(self._tracked.pop(k).item, k)

        logger.debug(
            "Rate limiter %s evicted %d expired and %d active windows",
            self.name,
            len(expired),
            overflow,
        )
