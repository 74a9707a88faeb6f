"""Unit tests for the fixed-window RateLimiter in cache/limiter.py.

Covers:
- The (N+1)-th check inside one window is disallowed
- The window is anchored to the first increment and resets after it elapses
- check() never writes; keys are independent
- ttl() reports the remaining window
- Check-then-increment under concurrency is approximate, never under-counts

The limiter runs on `limits` MemoryStorage, which reads the wall clock, so
the window tests use one-second windows and real sleeps.
"""

import threading
import time

from cache.limiter import RateLimiter


def _hit(limiter: RateLimiter, key: str, limit: int, window: int) -> bool:
    allowed = limiter.check(key, limit, window)
    if allowed:
        limiter.increment(key, limit, window)
    return allowed


def test_n_plus_one_is_disallowed(rate_limiter):
    results = [_hit(rate_limiter, "ip:1.2.3.4", 5, 60) for _ in range(6)]
    assert results == [True] * 5 + [False]


def test_window_resets_after_elapsing(rate_limiter):
    for _ in range(3):
        _hit(rate_limiter, "ip:1.2.3.4", 3, 1)
    assert not rate_limiter.check("ip:1.2.3.4", 3, 1)
    time.sleep(1.1)
    assert rate_limiter.check("ip:1.2.3.4", 3, 1)


def test_window_is_anchored_to_first_increment(rate_limiter):
    rate_limiter.increment("k", 2, 1)
    time.sleep(0.6)
    rate_limiter.increment("k", 2, 1)
    # The second increment did not extend the window opened by the first.
    assert not rate_limiter.check("k", 2, 1)
    time.sleep(0.5)
    assert rate_limiter.check("k", 2, 1)


def test_check_does_not_write(rate_limiter):
    for _ in range(10):
        assert rate_limiter.check("k", 1, 60)
    rate_limiter.increment("k", 1, 60)
    assert not rate_limiter.check("k", 1, 60)


def test_keys_are_independent(rate_limiter):
    _hit(rate_limiter, "ip:1.1.1.1", 1, 60)
    assert not rate_limiter.check("ip:1.1.1.1", 1, 60)
    assert rate_limiter.check("ip:2.2.2.2", 1, 60)
    assert rate_limiter.check("login:ip:1.1.1.1", 1, 60)


def test_ttl_reports_remaining_window(rate_limiter):
    assert rate_limiter.ttl("k", 5, 60) == 0
    rate_limiter.increment("k", 5, 60)
    assert 0 < rate_limiter.ttl("k", 5, 60) <= 60


def test_storage_is_healthy(rate_limiter):
    assert rate_limiter.healthy()


def test_concurrent_hits_are_approximately_bounded(rate_limiter):
    limit = 10
    allowed = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for _ in range(5):
            ok = _hit(rate_limiter, "ip:9.9.9.9", limit, 60)
            with lock:
                allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 40
    # Never under-counts; a burst may overshoot by a few but cannot admit all.
    assert limit <= sum(allowed) < 40
