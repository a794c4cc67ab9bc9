from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

import httpx
from rq import get_current_job

from app.core.config import settings
from app.db.session import SessionLocal
from app.models.points import PointAward, PointAwardStatus
from app.services.points import award_event


log = logging.getLogger(__name__)


def _job_id() -> str | None:
    job = get_current_job()
    return str(job.id) if job is not None else None


def _post_to_ledger(award: PointAward) -> None:
    url = str(settings.points_ledger_url or "").strip()
    timeout = httpx.Timeout(float(settings.points_ledger_timeout_seconds), pool=3.0)
    headers = {"Idempotency-Key": str(award.id)}
    token = str(settings.points_ledger_token or "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"

    with httpx.Client(timeout=timeout) as client:
        r = client.post(url, json=award_event(award), headers=headers)
        r.raise_for_status()


def publish_point_award_job(award_id: str) -> dict:
    """Deliver one recorded award to the gamification ledger.

    The ledger deduplicates on the Idempotency-Key, so an RQ retry after a
    lost response cannot double-credit the learner.
    """
    with SessionLocal() as db:
        award = db.get(PointAward, uuid.UUID(str(award_id)))
        if award is None:
            log.warning("point award missing award_id=%s", award_id)
            return {"ok": False, "reason": "not_found"}

        if award.status in {PointAwardStatus.published, PointAwardStatus.skipped}:
            return {"ok": True, "status": award.status.value, "already": True}

        if not str(settings.points_ledger_url or "").strip():
            award.status = PointAwardStatus.skipped
            award.published_at = datetime.now(timezone.utc)
            db.commit()
            log.info("points ledger not configured, award skipped award_id=%s", award.id)
            return {"ok": True, "status": award.status.value}

        award.publish_attempts = int(award.publish_attempts or 0) + 1
        try:
            _post_to_ledger(award)
        except httpx.HTTPError as e:
            award.last_error = f"{type(e).__name__}: {e}"[:1000]
            award.status = PointAwardStatus.failed
            db.commit()
            log.warning("point award publish failed award_id=%s job_id=%s err=%s", award.id, _job_id(), e)
            raise

        award.status = PointAwardStatus.published
        award.published_at = datetime.now(timezone.utc)
        award.last_error = None
        db.commit()
        log.info("point award published award_id=%s points=%s", award.id, award.points)
        return {"ok": True, "status": award.status.value}
