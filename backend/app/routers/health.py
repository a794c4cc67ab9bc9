import hmac

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text

from app.core.config import settings
from app.core.queue import enqueue_job
from app.core.redis_client import get_redis
from app.db import session as session_module
from app.services.attempt_sweep_jobs import SWEEP_LOCK_KEY, attempt_sweep_job

router = APIRouter(tags=["health"])


def _require_cron_secret(request: Request) -> None:
    secret = str(settings.cron_secret or "").strip()
    if not secret:
        raise HTTPException(status_code=404, detail="not found")

    provided = str(request.headers.get("x-cron-secret") or "").strip()
    if not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=403, detail="forbidden")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready():
    try:
        db = session_module.SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        r = get_redis()
        r.ping()
    except Exception as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e

    return {"status": "ready"}


def enqueue_attempt_sweep() -> dict:
    """Enqueue one sweep unless another ran within the sweep interval."""
    interval_seconds = max(15, int(settings.attempt_sweep_interval_seconds))
    lock_ttl = max(10, interval_seconds - 5)

    r = get_redis()
    acquired = r.set(SWEEP_LOCK_KEY, "1", nx=True, ex=int(lock_ttl))
    if not acquired:
        return {"ok": True, "enqueued": False, "reason": "locked"}

    job_id = enqueue_job(str(settings.rq_queue_default), attempt_sweep_job)
    if job_id is None:
        return {"ok": False, "enqueued": False, "reason": "queue_unavailable"}
    return {"ok": True, "enqueued": True, "job_id": job_id}


@router.post("/health/cron/attempt-sweep")
def cron_attempt_sweep(request: Request):
    _require_cron_secret(request)
    return enqueue_attempt_sweep()
