from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.audit_log import record_attempt_event
from app.models.attempt import AssessmentAttempt, AttemptStatus, QuestionAttempt
from app.models.audit import AttemptEventType
from app.services.evaluator import evaluate, spec_from_snapshot
from app.services.points import award_points_if_passed


log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compute_score_percent(earned_points: float, total_points: int) -> float:
    if not total_points or total_points <= 0:
        return 0.0
    percent = round(float(earned_points) / float(total_points) * 100.0, 1)
    return max(0.0, min(100.0, percent))


def recompute_earned_points(attempt: AssessmentAttempt) -> float:
    earned = sum(float(qa.points_earned or 0.0) for qa in attempt.question_attempts)
    # Question points are clamped at grading time; this guards the aggregate too.
    return min(float(earned), float(attempt.total_points or 0))


def has_ungraded_manual_questions(attempt: AssessmentAttempt) -> bool:
    return any(qa.requires_manual_grading and qa.graded_at is None for qa in attempt.question_attempts)


def score_attempt(db: Session, attempt: AssessmentAttempt) -> AssessmentAttempt:
    """Evaluate every snapshot question of a submitted attempt.

    Routes the attempt to pending_manual_grading when any manual-only
    question was answered; otherwise finalizes it in place.
    """
    if attempt.status != AttemptStatus.submitted:
        raise ValueError(f"attempt {attempt.id} is {attempt.status.value}, expected submitted")

    answers = dict(attempt.answers or {})
    for item in attempt.question_snapshot or []:
        qid = str(item["id"])
        answer = answers.get(qid)
        result = evaluate(spec_from_snapshot(item), answer)
        qa = QuestionAttempt(
            attempt_id=attempt.id,
            question_id=uuid.UUID(qid),
            answer=answer,
            is_correct=result.is_correct,
            points_earned=float(result.points_earned),
            max_points=int(item["points"]),
            requires_manual_grading=bool(result.requires_manual_grading),
        )
        db.add(qa)
        attempt.question_attempts.append(qa)

    attempt.earned_points = recompute_earned_points(attempt)

    if has_ungraded_manual_questions(attempt):
        attempt.status = AttemptStatus.pending_manual_grading
        attempt.passed = None
        attempt.score_percent = None
        log.info("attempt pending manual grading attempt_id=%s", attempt.id)
        return attempt

    return finalize_attempt(db, attempt)


def finalize_attempt(db: Session, attempt: AssessmentAttempt) -> AssessmentAttempt:
    """Set percent and verdict, mark graded, and publish points on a pass.

    Safe to call again on a graded attempt (re-grade): the verdict is
    recomputed and the award step stays idempotent per attempt.
    """
    was_passed = attempt.passed
    attempt.earned_points = recompute_earned_points(attempt)
    attempt.score_percent = compute_score_percent(attempt.earned_points, attempt.total_points)
    attempt.passed = attempt.score_percent >= float(attempt.passing_score_percent)
    attempt.status = AttemptStatus.graded
    attempt.graded_at = _now()

    record_attempt_event(
        db,
        attempt_id=attempt.id,
        event_type=AttemptEventType.attempt_graded,
        meta={
            "score_percent": attempt.score_percent,
            "passed": attempt.passed,
            "previous_passed": was_passed,
        },
    )
    log.info(
        "attempt graded attempt_id=%s score=%s passed=%s",
        attempt.id,
        attempt.score_percent,
        attempt.passed,
    )

    award_points_if_passed(db, attempt)
    return attempt
