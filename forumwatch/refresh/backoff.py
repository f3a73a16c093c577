"""Delay between polling cycles after the cycle itself has crashed."""

import random
from dataclasses import dataclass, field


@dataclass
class CycleBackoff:
    """
    Doubling delay between failed polling cycles.

    Source failures never reach this: they are recorded in the cache and the
    cycle counts as successful. Only an exception out of
    ``refresh_due_sources`` calls ``failed()``.

    ``failed()`` returns base_delay * 2^(failures - 1), capped at max_delay,
    then spread by up to ``jitter`` in either direction.
    """

    base_delay: float = 5.0
    max_delay: float = 300.0
    jitter: float = 0.5
    failures: int = field(default=0, init=False)

    def failed(self) -> float:
        delay = min(self.base_delay * 2**self.failures, self.max_delay)
        self.failures += 1
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))

    def succeeded(self) -> None:
        self.failures = 0
