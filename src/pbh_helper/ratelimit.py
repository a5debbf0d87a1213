"""Fixed-rate token bucket guarding the proxy's write endpoints."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable


class TokenBucket:
    """Bucket holding up to ``capacity`` tokens, refilled by ``refill`` every
    ``interval`` seconds.

    Refills are computed lazily on each call from a monotonic clock, so no
    timer thread is needed.
    """

    def __init__(
        self,
        capacity: int,
        interval: float,
        refill: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or interval <= 0 or refill <= 0:
            raise ValueError("token bucket parameters must be positive")
        self._capacity = capacity
        self._interval = interval
        self._refill = refill
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = Lock()

    @property
    def tokens(self) -> int:
        with self._lock:
            self._refill_locked()
            return self._tokens

    def try_consume(self) -> bool:
        with self._lock:
            self._refill_locked()
            if self._tokens <= 0:
                return False
            self._tokens -= 1
            return True

    def _refill_locked(self) -> None:
        now = self._clock()
        periods = int((now - self._last_refill) // self._interval)
        if periods <= 0:
            return
        self._last_refill += periods * self._interval
        self._tokens = min(self._capacity, self._tokens + periods * self._refill)
