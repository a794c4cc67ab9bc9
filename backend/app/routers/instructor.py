from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.security import require_instructor
from app.db.session import get_db
from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt
from app.models.user import User
from app.routers.assessments import build_attempt_result, iso_utc
from app.schemas.assessment import AttemptResult
from app.schemas.grading import (
    AssessmentAnalyticsResponse,
    GradeRequest,
    GradingQueueItem,
    GradingQueueResponse,
    InstructorAttemptsPage,
    PendingQuestion,
    QuestionAnalyticsResponse,
    QuestionAnalyticsRow,
)
from app.services import analytics
from app.services.attempts import get_assessment
from app.services.errors import Unauthorized
from app.services.manual_grading import GradingQueue, grade_question, may_grade

router = APIRouter(prefix="/instructor", tags=["instructor"])


def _uuid_or_422(value: str | None, field: str) -> uuid.UUID | None:
    if value is None or not str(value).strip():
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"invalid {field}") from e


def _owned_assessment(db: Session, assessment_id: str, user: User) -> Assessment:
    assessment = get_assessment(db, assessment_id)
    if not may_grade(user, assessment):
        raise Unauthorized("not allowed to view this assessment")
    return assessment


@router.get("/grading-queue", response_model=GradingQueueResponse)
def grading_queue(
    course_id: str | None = None,
    assessment_id: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_instructor),
):
    queue = GradingQueue(db)
    pending = queue.pending_for(
        user,
        course_id=_uuid_or_422(course_id, "course_id"),
        assessment_id=_uuid_or_422(assessment_id, "assessment_id"),
    )

    items: list[GradingQueueItem] = []
    for attempt in pending:
        assessment = db.get(Assessment, attempt.assessment_id)
        learner = db.get(User, attempt.user_id)
        prompts = {str(item["id"]): str(item.get("prompt") or "") for item in attempt.question_snapshot or []}
        items.append(
            GradingQueueItem(
                attempt_id=str(attempt.id),
                assessment_id=str(attempt.assessment_id),
                assessment_title=assessment.title if assessment else "",
                course_id=str(assessment.course_id) if assessment and assessment.course_id else None,
                user_id=str(attempt.user_id),
                user_name=learner.name if learner else "",
                attempt_no=int(attempt.attempt_no),
                submitted_at=iso_utc(attempt.submitted_at),
                pending_questions=[
                    PendingQuestion(
                        question_id=str(qa.question_id),
                        prompt=prompts.get(str(qa.question_id), ""),
                        answer=None if qa.answer is None else str(qa.answer),
                        max_points=int(qa.max_points),
                    )
                    for qa in queue.ungraded_questions(attempt)
                ],
            )
        )
    return GradingQueueResponse(items=items, total=len(items))


@router.post("/attempts/{attempt_id}/questions/{question_id}/grade", response_model=AttemptResult)
def grade(
    attempt_id: str,
    question_id: str,
    payload: GradeRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_instructor),
):
    attempt = grade_question(
        db,
        grader=user,
        attempt_id=attempt_id,
        question_id=question_id,
        points_earned=payload.points_earned,
        feedback=payload.feedback,
        request=request,
    )
    return build_attempt_result(db, attempt, viewer=user)


@router.get("/assessments/{assessment_id}/attempts", response_model=InstructorAttemptsPage)
def list_attempts(
    assessment_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(require_instructor),
):
    assessment = _owned_assessment(db, assessment_id, user)

    total = db.scalar(
        select(func.count(AssessmentAttempt.id)).where(AssessmentAttempt.assessment_id == assessment.id)
    ) or 0
    rows = db.scalars(
        select(AssessmentAttempt)
        .where(AssessmentAttempt.assessment_id == assessment.id)
        .order_by(AssessmentAttempt.started_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    return InstructorAttemptsPage(
        assessment_id=str(assessment.id),
        page=page,
        limit=limit,
        total=int(total),
        items=[build_attempt_result(db, a, viewer=user, include_questions=False) for a in rows],
    )


@router.get("/assessments/{assessment_id}/analytics", response_model=AssessmentAnalyticsResponse)
def assessment_analytics(
    assessment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_instructor),
):
    assessment = _owned_assessment(db, assessment_id, user)
    return AssessmentAnalyticsResponse(**analytics.assessment_analytics(db, assessment))


@router.get("/assessments/{assessment_id}/question-analytics", response_model=QuestionAnalyticsResponse)
def question_analytics(
    assessment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_instructor),
):
    assessment = _owned_assessment(db, assessment_id, user)
    rows = analytics.question_analytics(db, assessment)
    return QuestionAnalyticsResponse(
        assessment_id=str(assessment.id),
        questions=[QuestionAnalyticsRow(**r) for r in rows],
    )
