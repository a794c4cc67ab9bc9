from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.queue import enqueue_job
from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt
from app.models.points import PointAward, PointAwardStatus


log = logging.getLogger(__name__)

AWARD_REASON = "assessment_passed"
MAX_PUBLISH_ATTEMPTS = 10


def award_points_if_passed(db: Session, attempt: AssessmentAttempt) -> PointAward | None:
    """Record the point award for a passed attempt, at most once per attempt.

    The award row is the durable marker that publication was attempted; a
    later fail (re-grade, retry) never revokes it. Publication happens after
    commit through `dispatch_pending_awards`.
    """
    if not attempt.passed:
        return None

    existing = db.scalar(select(PointAward).where(PointAward.attempt_id == attempt.id))
    if existing is not None:
        return None

    assessment = db.get(Assessment, attempt.assessment_id)
    base = int(assessment.points_reward or 0) if assessment is not None else 0
    bonus = int(settings.first_attempt_bonus_points) if int(attempt.attempt_no or 0) == 1 else 0

    award = PointAward(
        attempt_id=attempt.id,
        user_id=attempt.user_id,
        assessment_id=attempt.assessment_id,
        points=base + bonus,
        first_attempt_bonus=bonus,
        reason=AWARD_REASON,
        status=PointAwardStatus.pending,
    )
    db.add(award)
    db.flush()
    log.info(
        "point award recorded attempt_id=%s user_id=%s points=%s bonus=%s",
        attempt.id,
        attempt.user_id,
        award.points,
        bonus,
    )
    return award


def award_event(award: PointAward) -> dict:
    return {
        "userId": str(award.user_id),
        "points": int(award.points),
        "reason": award.reason,
        "assessmentId": str(award.assessment_id),
        "attemptId": str(award.attempt_id),
    }


def _enqueue(awards) -> list[str]:
    from app.services.point_award_jobs import publish_point_award_job

    job_ids: list[str] = []
    for award in awards:
        job_id = enqueue_job(settings.rq_queue_points, publish_point_award_job, str(award.id), retries=3)
        if job_id is None:
            # Left pending; requeue_stale_awards picks it up on the next sweep.
            log.warning("point award not enqueued award_id=%s", award.id)
            continue
        job_ids.append(job_id)
    return job_ids


def dispatch_pending_awards(db: Session, *, attempt_id=None) -> list[str]:
    """Enqueue publication jobs for pending awards. Call only after commit."""
    stmt = select(PointAward).where(PointAward.status == PointAwardStatus.pending)
    if attempt_id is not None:
        stmt = stmt.where(PointAward.attempt_id == attempt_id)
    return _enqueue(db.scalars(stmt).all())


def requeue_stale_awards(db: Session) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=int(settings.point_award_requeue_after_minutes))
    stale = db.scalars(
        select(PointAward).where(
            PointAward.status.in_([PointAwardStatus.pending, PointAwardStatus.failed]),
            PointAward.publish_attempts < MAX_PUBLISH_ATTEMPTS,
            PointAward.created_at <= cutoff,
        )
    ).all()
    return len(_enqueue(stale))
