from __future__ import annotations

from dataclasses import dataclass

import redis
from fastapi import Depends, HTTPException, Request

from app.core.audit_log import _client_ip
from app.core.redis_client import get_redis


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int


def _subject(request: Request) -> str:
    # Declare this dependency after get_current_user so authenticated callers are keyed by user.
    uid = getattr(getattr(request, "state", None), "user_id", None)
    if uid:
        return f"u:{uid}"
    return f"ip:{_client_ip(request) or 'unknown'}"


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    async def _dep(request: Request) -> RateLimit:
        r = get_redis()
        key = f"rl:{key_prefix}:{_subject(request)}"
        rl = RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        try:
            current = r.incr(key)
            if current == 1:
                r.expire(key, int(window_seconds))
        except redis.RedisError:
            return rl

        if int(current) > int(limit):
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

        return rl

    return Depends(_dep)
