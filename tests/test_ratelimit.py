from __future__ import annotations

from quote_intake.core.ratelimit import BatchUploadCounter, BoundedCache, SlidingWindowRateLimiter


def test_sixth_request_in_window_is_rejected(clock):
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=600, clock=clock)
    for _ in range(5):
        assert limiter.admit("1.2.3.4")
        clock.advance(10)
    assert not limiter.admit("1.2.3.4")
    assert limiter.count("1.2.3.4") == 5


def test_request_is_admitted_once_window_elapses_from_first(clock):
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=600, clock=clock)
    start = clock.now
    for _ in range(5):
        assert limiter.admit("1.2.3.4")
    assert not limiter.admit("1.2.3.4")

    clock.now = start + 600
    assert limiter.admit("1.2.3.4")


def test_rejections_do_not_consume_slots(clock):
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    assert limiter.admit("a")
    clock.advance(30)
    assert limiter.admit("a")
    for _ in range(5):
        assert not limiter.admit("a")
    clock.advance(31)
    # only the first instant expired; the rejected attempts left nothing behind
    assert limiter.admit("a")
    assert not limiter.admit("a")


def test_boundary_burst_admits_up_to_twice_the_limit(clock):
    limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=clock)
    clock.advance(59)
    assert all(limiter.admit("a") for _ in range(3))
    clock.advance(60)
    assert all(limiter.admit("a") for _ in range(3))


def test_keys_are_independent(clock):
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
    assert limiter.admit("a")
    assert not limiter.admit("a")
    assert limiter.admit("b")


def test_retry_after_counts_down_to_oldest_expiry(clock):
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=600, clock=clock)
    assert limiter.retry_after("a") == 0
    limiter.admit("a")
    clock.advance(100)
    limiter.admit("a")
    assert limiter.retry_after("a") == 500


def test_oldest_client_is_evicted_when_map_is_full(clock):
    limiter = SlidingWindowRateLimiter(
        max_requests=1, window_seconds=600, max_keys=2, clock=clock
    )
    assert limiter.admit("a")
    assert limiter.admit("b")
    assert limiter.admit("c")
    # "a" was least recently used and has been forgotten
    assert limiter.admit("a")
    assert not limiter.admit("c")


def test_bounded_cache_get_refreshes_recency(clock):
    cache: BoundedCache[int] = BoundedCache(max_size=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert len(cache) == 2


def test_bounded_cache_ttl_expires_entries(clock):
    cache: BoundedCache[int] = BoundedCache(max_size=10, ttl_seconds=60, clock=clock)
    cache.set("a", 1)
    clock.advance(60)
    assert cache.get("a") == 1
    clock.advance(1)
    assert cache.get("a") is None


def test_batch_counter_counts_and_expires(clock):
    counter = BatchUploadCounter(ttl_seconds=600, clock=clock)
    assert counter.count("batch-1") == 0
    assert counter.record_upload("batch-1") == 1
    assert counter.record_upload("batch-1") == 2
    assert counter.count("batch-2") == 0

    clock.advance(601)
    assert counter.count("batch-1") == 0
    assert counter.record_upload("batch-1") == 1
