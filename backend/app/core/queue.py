from __future__ import annotations

import logging
from typing import Any, Callable

import redis
from rq import Queue, Retry

from app.core.config import settings


log = logging.getLogger(__name__)


def get_queue(name: str | None = None) -> Queue:
    conn = redis.Redis.from_url(settings.redis_url)
    eff = str(name or "").strip() or str(settings.rq_queue_default)
    return Queue(name=eff, connection=conn)


def enqueue_job(queue_name: str | None, func: Callable[..., Any], *args, retries: int = 0, **kwargs) -> str | None:
    """Enqueue `func` on the named queue; returns the job id or None when Redis is unavailable."""
    try:
        q = get_queue(queue_name)
        retry = Retry(max=int(retries), interval=[10, 30, 60]) if retries > 0 else None
        job = q.enqueue(
            func,
            *args,
            retry=retry,
            job_timeout=60,
            result_ttl=60 * 60,
            failure_ttl=24 * 60 * 60,
            **kwargs,
        )
    except redis.RedisError as e:
        log.warning("enqueue failed queue=%s func=%s err=%s", queue_name, getattr(func, "__name__", func), e)
        return None
    return str(job.id)
