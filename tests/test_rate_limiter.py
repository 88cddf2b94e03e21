from unittest import mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.services.rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryRateLimiter:
    def test_limit_per_window(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limit=2, window_seconds=60, cleanup_seconds=0, clock=clock)

        assert limiter.hit("1.2.3.4")
        assert limiter.hit("1.2.3.4")
        assert not limiter.hit("1.2.3.4")
        assert limiter.hit("5.6.7.8")

        clock.now += 61
        assert limiter.hit("1.2.3.4")
        limiter.close()

    def test_cleanup_drops_lapsed_windows(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limit=5, window_seconds=10, cleanup_seconds=0, clock=clock)
        limiter.hit("a")
        clock.now += 5
        limiter.hit("b")

        clock.now += 6
        assert limiter.cleanup() == 1
        assert len(limiter) == 1
        limiter.close()

    def test_close_stops_cleanup_timer(self):
        limiter = InMemoryRateLimiter(limit=5, window_seconds=10, cleanup_seconds=3600)
        timer = limiter._timer
        assert timer is not None and timer.daemon

        limiter.close()

        assert limiter._timer is None
        assert not timer.is_alive() or timer.finished.is_set()


class TestRedisRateLimiter:
    def _client(self, count):
        client = mock.Mock()
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [count, True]
        return client, pipe

    def test_counts_in_shared_window(self):
        client, pipe = self._client(3)
        limiter = RedisRateLimiter(limit=3, window_seconds=60, client=client)

        assert limiter.hit("1.2.3.4")
        pipe.incr.assert_called_once_with("ratelimit:1.2.3.4")
        pipe.expire.assert_called_once_with("ratelimit:1.2.3.4", 60, nx=True)

    def test_over_limit(self):
        client, _ = self._client(4)
        assert not RedisRateLimiter(limit=3, window_seconds=60, client=client).hit("k")

    def test_fails_open_when_redis_is_down(self):
        client = mock.Mock()
        client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

        assert RedisRateLimiter(limit=1, window_seconds=60, client=client).hit("k")

    def test_close_closes_client(self):
        client = mock.Mock()
        RedisRateLimiter(limit=1, window_seconds=60, client=client).close()
        client.close.assert_called_once()


def test_base_limiter_is_abstract():
    with pytest.raises(TypeError):
        RateLimiter(limit=1, window_seconds=60)
