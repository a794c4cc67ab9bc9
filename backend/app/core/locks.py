from __future__ import annotations

import time
import uuid
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator

from app.core.config import settings
from app.core.redis_client import get_redis


class LockNotAcquired(Exception):
    pass


@contextmanager
def redis_lock(key: str, *, ttl_seconds: int | None = None, wait_seconds: float | None = None) -> Iterator[None]:
    """Mutual exclusion over `key` using SET NX EX.

    The TTL bounds how long a crashed holder can block others. Release only
    deletes the key if this holder still owns it.
    """
    r = get_redis()
    ttl = int(ttl_seconds if ttl_seconds is not None else settings.attempt_lock_ttl_seconds)
    wait = float(wait_seconds if wait_seconds is not None else settings.attempt_lock_wait_seconds)
    token = uuid.uuid4().hex
    deadline = time.monotonic() + max(0.0, wait)

    while not r.set(key, token, nx=True, ex=max(1, ttl)):
        if time.monotonic() >= deadline:
            raise LockNotAcquired(key)
        time.sleep(0.05)

    try:
        yield
    finally:
        if r.get(key) == token:
            r.delete(key)


def attempt_lock(attempt_id) -> AbstractContextManager[None]:
    return redis_lock(f"locks:attempt:{attempt_id}")


def attempt_start_lock(user_id, assessment_id) -> AbstractContextManager[None]:
    return redis_lock(f"locks:attempt_start:{user_id}:{assessment_id}")
