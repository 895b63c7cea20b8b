"""Sliding window rate limiters guarding the public authentication endpoints."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Final, Protocol

import redis
from redis import Redis
from redis.exceptions import RedisError, ResponseError

from ..config import Settings

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    """Admission check shared by the in-memory and Redis backends."""

    def allow(self, key: str) -> bool: ...


class SlidingWindowRateLimiter:
    """Thread-safe, process-local sliding window limiter.

    Keys come from request data; keys whose hits have all left the window are
    swept once per window, so the table only holds keys seen in the last window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` and report whether it fits in the window."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(now)
            hits = self._events.get(key)
            if hits is None:
                hits = self._events[key] = deque()
            while hits and now - hits[0] >= self._window:
                hits.popleft()
            if len(hits) >= self._max_requests:
                return False
            hits.append(now)
            return True

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._events)

    def _sweep(self, now: float) -> None:
        """Drop every key whose most recent hit has left the window; caller holds the lock."""
        stale = [key for key, hits in self._events.items() if not hits or now - hits[-1] >= self._window]
        for key in stale:
            del self._events[key]
        self._last_sweep = now


class RedisSlidingWindowRateLimiter:
    """Distributed sliding window limiter backed by Redis sorted sets."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local seq_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= max_requests then
        return 0
    end
    local seq = redis.call('INCR', seq_key)
    redis.call('PEXPIRE', seq_key, window_ms)
    redis.call('ZADD', key, now_ms, now_ms .. ':' .. seq)
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "auth-rate",
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def allow(self, key: str) -> bool:
        """Return ``True`` when ``key`` is still within the shared limit."""
        now_ms = int(time.time() * 1000)
        redis_key = self._redis_key(key)
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_requests, now_ms])
        except ResponseError as exc:
            # Some Redis-compatible servers ship without scripting support.
            if "unknown command" not in str(exc).lower():
                raise
            return self._allow_without_lua(redis_key, now_ms)
        return int(result) == 1

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _allow_without_lua(self, redis_key: str, now_ms: int) -> bool:
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_requests:
            return False
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured limiter backend, falling back to memory when Redis is down."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
        except RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
