import threading
import time

import pytest

from wanzhi.ratelimit import (
    Algorithm,
    FixedWindowLimiter,
    RateLimitConfig,
    SlidingWindowLimiter,
    TokenBucketLimiter,
    default_config,
    new_rate_limiter,
)


def test_fixed_window_limiter():
    limiter = FixedWindowLimiter(3, 0.1)
    key = "test-client"
    assert [limiter.allow(key) for _ in range(3)] == [True, True, True]
    assert limiter.allow(key) is False
    time.sleep(0.12)
    assert limiter.allow(key) is True


def test_fixed_window_limiter_multiple_keys():
    limiter = FixedWindowLimiter(2)
    assert limiter.allow("client-1") is True
    assert limiter.allow("client-1") is True
    assert limiter.allow("client-1") is False
    assert limiter.allow("client-2") is True


def test_fixed_window_limiter_stats():
    limiter = FixedWindowLimiter(5)
    key = "test-key"
    for _ in range(3):
        limiter.allow(key)
    stats = limiter.stats(key)
    assert stats.available == 2
    assert stats.rejected == 0

    for _ in range(2):
        assert limiter.allow(key) is True
    for _ in range(2):
        limiter.allow(key)
    stats = limiter.stats(key)
    assert stats.available == 0
    assert stats.rejected == 2
    assert stats.window_end is not None and stats.window_end > time.time() - 1


def test_fixed_window_limiter_reset():
    limiter = FixedWindowLimiter(2)
    key = "test-key"
    limiter.allow(key)
    limiter.allow(key)
    assert limiter.allow(key) is False
    limiter.reset(key)
    assert limiter.allow(key) is True


def test_fixed_window_allow_n_edges():
    limiter = FixedWindowLimiter(3)
    assert limiter.allow_n("k", 0) is True
    assert limiter.allow_n("k", 4) is False
    assert limiter.stats("k").available == 3


def test_fixed_window_wait_reports_time_to_window_end():
    limiter = FixedWindowLimiter(1, 10.0)
    assert limiter.wait("k") == 0.0
    waited = limiter.wait("k")
    assert 0.0 < waited <= 10.0


def test_sliding_window_limiter():
    limiter = SlidingWindowLimiter(5, 0.2)
    key = "test-client"
    assert all(limiter.allow(key) for _ in range(5))
    assert limiter.allow(key) is False
    time.sleep(0.22)
    assert limiter.allow(key) is True


def test_sliding_window_limiter_concurrent():
    limiter = SlidingWindowLimiter(100, 1.0)
    key = "concurrent-key"
    threads = [threading.Thread(target=limiter.allow, args=(key,)) for _ in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert limiter.stats(key).available == 50


def test_sliding_window_wait_and_reset():
    limiter = SlidingWindowLimiter(1, 5.0)
    assert limiter.wait("k") == 0.0
    waited = limiter.wait("k")
    assert 0.0 < waited <= 5.0
    limiter.reset("k")
    assert limiter.stats("k").available == 1


def test_token_bucket_limiter():
    limiter = TokenBucketLimiter(10, 10, 0.1)
    key = "test-key"
    assert all(limiter.allow(key) for _ in range(10))
    assert limiter.allow(key) is False
    time.sleep(0.15)
    assert limiter.allow(key) is True


def test_token_bucket_limiter_burst():
    limiter = TokenBucketLimiter(5, 10, 2.0)
    key = "burst-key"
    assert all(limiter.allow(key) for _ in range(10))
    assert limiter.allow(key) is False


def test_token_bucket_limiter_wait():
    limiter = TokenBucketLimiter(2, 2, 0.05)
    key = "wait-key"
    limiter.allow(key)
    limiter.allow(key)
    waited = limiter.wait(key)
    assert 0.0 <= waited <= 1.0
    time.sleep(waited + 0.01)
    assert limiter.allow(key) is True


def test_token_bucket_reset_refills():
    limiter = TokenBucketLimiter(3, 3, 10.0)
    for _ in range(3):
        limiter.allow("k")
    assert limiter.stats("k").available == 0
    limiter.reset("k")
    assert limiter.stats("k").available == 3


@pytest.mark.parametrize(
    "config",
    [
        RateLimitConfig(algorithm=Algorithm.FIXED_WINDOW, limit=10),
        RateLimitConfig(algorithm=Algorithm.SLIDING_WINDOW, limit=10, window=1.0),
        RateLimitConfig(algorithm=Algorithm.TOKEN_BUCKET, limit=10, burst=10, interval=1.0),
    ],
)
def test_new_rate_limiter(config):
    limiter = new_rate_limiter(config)
    assert limiter.allow("test") is True
    assert limiter.stats("test").available == 9


def test_new_rate_limiter_picks_algorithm():
    bucket = new_rate_limiter(
        RateLimitConfig(algorithm=Algorithm.TOKEN_BUCKET, limit=2, burst=2, interval=10.0)
    )
    assert bucket.allow("a") is True
    assert bucket.allow("a") is True
    # The token bucket is shared by every key.
    assert bucket.allow("b") is False

    fixed = new_rate_limiter(default_config())
    assert fixed.allow("a") is True
    assert fixed.stats("a").available == 59
    assert fixed.stats("b").available == 60


@pytest.mark.parametrize(
    "algorithm, want",
    [
        (Algorithm.FIXED_WINDOW, "fixed-window"),
        (Algorithm.SLIDING_WINDOW, "sliding-window"),
        (Algorithm.TOKEN_BUCKET, "token-bucket"),
    ],
)
def test_algorithm_string(algorithm, want):
    assert str(algorithm) == want