from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import redis

logger = logging.getLogger("mdm_server.cache")

KEY_PREFIX = "mdm"


def _client(redis_url: str) -> redis.Redis:
    return redis.Redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1, socket_timeout=1)


class RedisCache:
    """Short-lived JSON cache; a Redis outage degrades to cache misses."""

    def __init__(self, redis_url: str) -> None:
        self.client = _client(redis_url)

    def ping(self) -> None:
        self.client.ping()

    def get_json(self, key: str) -> Any | None:
        try:
            raw = self.client.get(f"{KEY_PREFIX}:cache:{key}")
        except redis.RedisError:
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("discarding corrupt cache entry key=%s", key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        encoded = json.dumps(value, ensure_ascii=True, separators=(",", ":"))
        try:
            self.client.set(f"{KEY_PREFIX}:cache:{key}", encoded, ex=max(1, ttl_seconds))
        except redis.RedisError:
            logger.debug("cache write skipped for key=%s", key)

    def get_or_compute(self, key: str, ttl_seconds: int, compute: Callable[[], Any]) -> Any:
        cached = self.get_json(key)
        if cached is not None:
            return cached
        value = compute()
        self.set_json(key, value, ttl_seconds)
        return value


@dataclass(slots=True)
class _Window:
    count: int
    resets_at: float


class RedisRateLimiter:
    """Fixed-window request counter keyed by caller identity.

    Without Redis the limiter refuses traffic when ``fail_closed`` is set and
    otherwise counts in process memory. Callers may override ``fail_closed``
    per call; expired in-process windows are swept once per window length.
    """

    def __init__(self, redis_url: str, fail_closed: bool = True) -> None:
        self.client = _client(redis_url)
        self.fail_closed = fail_closed
        self._windows: dict[str, _Window] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    def allow(self, key: str, limit: int, window_seconds: int = 60, fail_closed: bool | None = None) -> bool:
        bucket = f"{KEY_PREFIX}:ratelimit:{key}"
        ceiling = max(1, limit)
        try:
            pipe = self.client.pipeline()
            pipe.incr(bucket)
            pipe.ttl(bucket)
            count, ttl = pipe.execute()
            if int(ttl) < 0:
                self.client.expire(bucket, max(1, window_seconds))
        except redis.RedisError:
            if fail_closed is None:
                fail_closed = self.fail_closed
            if fail_closed:
                logger.warning("rate limiter unavailable; rejecting key=%s", key)
                return False
            return self._allow_local(bucket, ceiling, window_seconds)
        return int(count) <= ceiling

    def _allow_local(self, bucket: str, ceiling: int, window_seconds: int) -> bool:
        now = time.monotonic()
        with self._lock:
            if now >= self._next_sweep:
                self._windows = {name: kept for name, kept in self._windows.items() if kept.resets_at > now}
                self._next_sweep = now + window_seconds
            window = self._windows.get(bucket)
            if window is None or now >= window.resets_at:
                window = _Window(count=0, resets_at=now + window_seconds)
                self._windows[bucket] = window
            window.count += 1
            return window.count <= ceiling
