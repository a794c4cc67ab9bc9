from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.audit_log import record_attempt_event
from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt, AttemptStatus, QuestionAttempt
from app.models.audit import AttemptEventType
from app.models.user import User, UserRole
from app.services.attempts import load_attempt, locked_attempt, parse_uuid
from app.services.errors import AttemptNotGradable, InvalidPoints, QuestionNotFound, Unauthorized
from app.services.points import dispatch_pending_awards
from app.services.scoring import finalize_attempt, has_ungraded_manual_questions, recompute_earned_points


log = logging.getLogger(__name__)

GRADABLE_STATUSES = (AttemptStatus.pending_manual_grading, AttemptStatus.graded)


def may_grade(grader: User, assessment: Assessment | None) -> bool:
    if grader.role == UserRole.admin:
        return True
    return grader.role == UserRole.instructor and assessment is not None and assessment.instructor_id == grader.id


class GradingQueue:
    """Attempts waiting on an instructor, derived from attempt status."""

    def __init__(self, db: Session):
        self.db = db

    def pending_for(self, grader: User, *, course_id=None, assessment_id=None) -> list[AssessmentAttempt]:
        stmt = (
            select(AssessmentAttempt)
            .join(Assessment, Assessment.id == AssessmentAttempt.assessment_id)
            .where(AssessmentAttempt.status == AttemptStatus.pending_manual_grading)
        )
        if grader.role != UserRole.admin:
            stmt = stmt.where(Assessment.instructor_id == grader.id)
        if course_id is not None:
            stmt = stmt.where(Assessment.course_id == course_id)
        if assessment_id is not None:
            stmt = stmt.where(Assessment.id == assessment_id)
        # Oldest first: learners who submitted earliest get graded first.
        stmt = stmt.order_by(AssessmentAttempt.submitted_at.asc())
        return list(self.db.scalars(stmt))

    @staticmethod
    def ungraded_questions(attempt: AssessmentAttempt) -> list[QuestionAttempt]:
        return [qa for qa in attempt.question_attempts if qa.requires_manual_grading and qa.graded_at is None]


def grade_question(
    db: Session,
    *,
    grader: User,
    attempt_id,
    question_id,
    points_earned: float,
    feedback: str | None = None,
    request: Request | None = None,
) -> AssessmentAttempt:
    """Record an instructor's score for one question of a submitted attempt.

    Any question may be (re-)graded once the attempt left in_progress. The
    attempt is finalized when no manual question is left ungraded, which for
    an already graded attempt recomputes the verdict.
    """
    with locked_attempt(attempt_id):
        attempt = load_attempt(db, attempt_id, for_update=True)
        assessment = db.get(Assessment, attempt.assessment_id)
        if not may_grade(grader, assessment):
            raise Unauthorized()

        if attempt.status not in GRADABLE_STATUSES:
            raise AttemptNotGradable()

        qid = parse_uuid(question_id, QuestionNotFound)
        qa = next((q for q in attempt.question_attempts if q.question_id == qid), None)
        if qa is None:
            raise QuestionNotFound()

        try:
            points = float(points_earned)
        except (TypeError, ValueError) as e:
            raise InvalidPoints() from e
        if math.isnan(points) or points < 0 or points > float(qa.max_points):
            raise InvalidPoints(f"points must be between 0 and {qa.max_points}")

        previous = qa.points_earned
        qa.points_earned = points
        qa.is_correct = points >= float(qa.max_points)
        qa.graded_by = grader.id
        qa.graded_at = datetime.now(timezone.utc)
        qa.instructor_feedback = feedback

        record_attempt_event(
            db,
            attempt_id=attempt.id,
            event_type=AttemptEventType.question_graded,
            actor_user_id=grader.id,
            meta={"question_id": str(qid), "points": points, "previous_points": previous},
            request=request,
        )

        attempt.earned_points = recompute_earned_points(attempt)
        if not has_ungraded_manual_questions(attempt):
            finalize_attempt(db, attempt)

        db.commit()

    log.info(
        "question graded attempt_id=%s question_id=%s grader_id=%s points=%s",
        attempt.id,
        qid,
        grader.id,
        points,
    )
    dispatch_pending_awards(db, attempt_id=attempt.id)
    return attempt
