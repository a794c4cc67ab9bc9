from __future__ import annotations

import logging

from app.db.session import SessionLocal
from app.services.attempts import abandon_stale_attempts, expire_overdue_attempts
from app.services.points import requeue_stale_awards


log = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "locks:attempt_sweep"


def attempt_sweep_job(*, limit: int = 500) -> dict:
    """Deadline-submit overdue attempts, abandon stale ones, requeue stuck awards."""
    take = max(1, min(int(limit or 500), 5000))

    db = SessionLocal()
    try:
        expired = expire_overdue_attempts(db, limit=take)
        abandoned = abandon_stale_attempts(db, limit=take)
        requeued = requeue_stale_awards(db)
    finally:
        db.close()

    if expired or abandoned or requeued:
        log.info("attempt sweep expired=%s abandoned=%s awards_requeued=%s", expired, abandoned, requeued)
    return {"ok": True, "expired": expired, "abandoned": abandoned, "awards_requeued": requeued}
