"""Rate limiting for provider calls.

Responsibilities:
- Enforce a minimum interval between requests sharing a key.
- Stay safe when several generation workers acquire concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from time import monotonic, sleep
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around provider requests."""

    min_interval_seconds: float = 1.0
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @classmethod
    def per_minute(cls, requests_per_minute: int) -> RateLimiter:
        """Create a limiter spacing requests evenly across one minute."""

        if requests_per_minute <= 0:
            return cls(min_interval_seconds=0.0)
        return cls(min_interval_seconds=60.0 / requests_per_minute)

    def acquire(self, key: str) -> None:
        """Block until a request for `key` is allowed, then reserve the next slot."""

        if self.min_interval_seconds <= 0.0:
            return
        with self._lock:
            now = self.clock()
            start_at = max(now, self._next_allowed_at.get(key, 0.0))
            self._next_allowed_at[key] = start_at + self.min_interval_seconds
        wait_seconds = start_at - now
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
