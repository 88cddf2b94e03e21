# storefront/services/rate_limiter.py
import threading
import time
from abc import ABC, abstractmethod

import redis
from redis.exceptions import RedisError

from storefront.utils.retry import redis_retry
from storefront.utils import settings
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class RateLimiter(ABC):
    """Fixed-window request counter per client key."""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window = window_seconds

    @abstractmethod
    def hit(self, key: str) -> bool:
        """Count one request for key; False once the window's limit is used up."""

    def close(self) -> None:
        pass


class InMemoryRateLimiter(RateLimiter):
    """
    Per-process counters. A daemon timer purges lapsed windows every
    cleanup_seconds until close() is called.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        cleanup_seconds: int = 600,
        clock=time.monotonic,
    ):
        super().__init__(limit, window_seconds)
        self.cleanup_seconds = cleanup_seconds
        self.clock = clock
        self._records: dict[str, list] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._closed = False
        self._schedule_cleanup()

    def hit(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            record = self._records.get(key)

            if record is None or now > record[1]:
                self._records[key] = [1, now + self.window]
                return True

            if record[0] >= self.limit:
                return False

            record[0] += 1
            return True

    def cleanup(self) -> int:
        now = self.clock()
        with self._lock:
            lapsed = [k for k, (_, reset_at) in self._records.items() if now > reset_at]
            for k in lapsed:
                del self._records[k]
        return len(lapsed)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def __len__(self):
        return len(self._records)

    def _schedule_cleanup(self) -> None:
        if self._closed or self.cleanup_seconds <= 0:
            return
        self._timer = threading.Timer(self.cleanup_seconds, self._run_cleanup)
        self._timer.daemon = True
        self._timer.start()

    def _run_cleanup(self) -> None:
        self.cleanup()
        with self._lock:
            if self._closed:
                return
        self._schedule_cleanup()


class RedisRateLimiter(RateLimiter):
    """Counters shared by every worker process; keys expire with their window."""

    def __init__(self, limit: int, window_seconds: int, client: redis.Redis | None = None, url: str | None = None):
        super().__init__(limit, window_seconds)
        self.redis = client or redis.Redis.from_url(url or settings.REDIS_URL, decode_responses=True)

    def hit(self, key: str) -> bool:
        try:
            count = self._incr(f"ratelimit:{key}")
        except RedisError as e:
            # fail open
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True
        return count <= self.limit

    @redis_retry()
    def _incr(self, key: str) -> int:
        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window, nx=True)
        count, _ = pipe.execute()
        return int(count)

    def close(self) -> None:
        self.redis.close()


def build_rate_limiter(backend: str = settings.RATE_LIMIT_BACKEND) -> RateLimiter:
    if backend == "redis":
        return RedisRateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
    return InMemoryRateLimiter(
        settings.RATE_LIMIT_REQUESTS,
        settings.RATE_LIMIT_WINDOW_SECONDS,
        cleanup_seconds=settings.RATE_LIMIT_CLEANUP_SECONDS,
    )
