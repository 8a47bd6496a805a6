# src/infrastructure/rate_limit.py

import logging
import math
import threading
import time
import uuid
from typing import Callable, Dict, List

import redis

from src.infrastructure.config import AppConfig


logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Per-process, in-memory limiter keyed by caller identity.
    Keeps the timestamps of recent hits for each key.

    Used for local runs and tests. Multi-process deployments set
    RATE_LIMIT_REDIS_URL and get RedisRateLimiter instead.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, List[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def allow(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            hits = [t for t in self._hits.get(key, []) if now - t < self.window_seconds]
            if len(hits) >= self.max_requests:
                self._hits[key] = hits
                return False
            hits.append(now)
            self._hits[key] = hits
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def _sweep(self, now: float) -> None:
        # Callers that stopped arriving leave no entry behind.
        stale = [
            key
            for key, hits in self._hits.items()
            if not hits or now - hits[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now


class RedisRateLimiter:
    """
    Sliding window shared by every worker, one sorted set per key.

    Each hit is scored by its timestamp. Hits over the limit are
    removed again so refused requests do not extend the block.
    When Redis is unreachable requests are let through.
    """

    def __init__(
        self,
        client: redis.Redis,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
        prefix: str = "enotempo:rl:",
    ):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.prefix = prefix

    def allow(self, key: str) -> bool:
        now = self.clock()
        name = f"{self.prefix}{key}"
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.zremrangebyscore(name, "-inf", now - self.window_seconds)
            pipe.zadd(name, {member: now})
            pipe.zcard(name)
            pipe.expire(name, max(1, math.ceil(self.window_seconds)))
            _, _, count, _ = pipe.execute()

            if count > self.max_requests:
                self.client.zrem(name, member)
                return False
            return True
        except redis.RedisError as exc:
            logger.warning("Rate limiter store unavailable, allowing request: %s", exc)
            return True

    def reset(self) -> None:
        for name in self.client.scan_iter(match=f"{self.prefix}*"):
            self.client.delete(name)


def build_rate_limiter(config: AppConfig):
    if config.rate_limit_redis_url:
        logger.info("Rate limiting backed by Redis.")
        client = redis.from_url(
            config.rate_limit_redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        return RedisRateLimiter(
            client,
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
        )

    logger.info("Rate limiting kept in process memory.")
    return SlidingWindowRateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds,
    )
