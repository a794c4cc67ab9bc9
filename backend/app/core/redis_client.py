from __future__ import annotations

import redis

from app.core.config import settings


_pool: redis.ConnectionPool | None = None


def get_redis() -> redis.Redis:
    # One pool per process; attempt locks and rate limits hit Redis on every request.
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)
    return redis.Redis(connection_pool=_pool)
