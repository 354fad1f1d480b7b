"""
Process-local admission state.

Both structures live in one process. Under N running instances the effective
limit is N times the configured one; nothing here coordinates across instances.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

from quote_intake.core.config import settings

V = TypeVar("V")

Clock = Callable[[], float]


class BoundedCache(Generic[V]):
    """LRU map with an optional per-entry TTL; the least recently used key is evicted first."""

    def __init__(
        self, *, max_size: int, ttl_seconds: float | None = None, clock: Clock = time.monotonic
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: OrderedDict[str, tuple[V, float]] = OrderedDict()

    def _is_expired(self, stored_at: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - stored_at > self.ttl_seconds

    def get(self, key: str) -> V | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._is_expired(stored_at):
            self._data.pop(key, None)
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: V) -> None:
        self._data[key] = (value, self._clock())
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class SlidingWindowRateLimiter:
    """
    Admits at most `max_requests` per key within the trailing `window_seconds`.

    Instants older than the window are filtered out on each call, never by a timer.
    A burst at the end of one window followed by one at the start of the next can
    admit up to 2x `max_requests` within a single window length.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        max_keys: int = 5000,
        clock: Clock = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: BoundedCache[list[float]] = BoundedCache(max_size=max_keys, clock=clock)

    def _live(self, key: str, now: float) -> list[float]:
        return [t for t in (self._hits.get(key) or []) if now - t < self.window_seconds]

    def admit(self, key: str) -> bool:
        now = self._clock()
        hits = self._live(key, now)
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        self._hits.set(key, hits)
        return True

    def count(self, key: str) -> int:
        return len(self._live(key, self._clock()))

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest live instant for `key` leaves the window."""
        now = self._clock()
        hits = self._live(key, now)
        if len(hits) < self.max_requests:
            return 0
        return max(1, int(hits[0] + self.window_seconds - now + 0.999))


class BatchUploadCounter:
    """Counts files per client batch id; entries expire `ttl_seconds` after the last upload."""

    def __init__(self, *, ttl_seconds: float, max_keys: int = 5000, clock: Clock = time.monotonic):
        self._counts: BoundedCache[int] = BoundedCache(
            max_size=max_keys, ttl_seconds=ttl_seconds, clock=clock
        )

    def count(self, batch_id: str) -> int:
        return self._counts.get(batch_id) or 0

    def record_upload(self, batch_id: str) -> int:
        count = self.count(batch_id) + 1
        self._counts.set(batch_id, count)
        return count


_limiters: dict[str, SlidingWindowRateLimiter] = {}
_batch_counter: BatchUploadCounter | None = None


def get_rate_limiter(scope: str) -> SlidingWindowRateLimiter:
    limiter = _limiters.get(scope)
    if limiter is not None:
        return limiter
    max_requests = settings.upload_rate_limit_max if scope == "upload" else settings.rate_limit_max
    limiter = SlidingWindowRateLimiter(
        max_requests=max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        max_keys=settings.rate_limit_max_clients,
    )
    _limiters[scope] = limiter
    return limiter


def get_batch_counter() -> BatchUploadCounter:
    global _batch_counter  # noqa: PLW0603
    if _batch_counter is None:
        _batch_counter = BatchUploadCounter(
            ttl_seconds=settings.rate_limit_window_seconds,
            max_keys=settings.rate_limit_max_clients,
        )
    return _batch_counter


def reset_admission_state() -> None:
    global _batch_counter  # noqa: PLW0603
    _limiters.clear()
    _batch_counter = None
