from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.rate_limit import rate_limit
from app.core.security import get_current_user
from app.db.session import get_db
from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt, AttemptStatus
from app.models.user import User
from app.schemas.assessment import (
    AnswerRequest,
    AnswerResponse,
    AttemptListResponse,
    AttemptResult,
    AttemptStartResponse,
    AttemptSubmitRequest,
    QuestionPublic,
    QuestionResult,
    SubmitRequest,
)
from app.services import attempts as attempt_service
from app.services.evaluator import public_question

router = APIRouter(prefix="/assessments", tags=["assessments"])


def iso_utc(dt: datetime | None) -> str | None:
    dt = attempt_service.as_aware(dt)
    return dt.isoformat() if dt is not None else None


def build_attempt_result(
    db: Session,
    attempt: AssessmentAttempt,
    *,
    viewer: User,
    include_questions: bool = True,
) -> AttemptResult:
    assessment = db.get(Assessment, attempt.assessment_id)
    is_staff = viewer.id != attempt.user_id
    show_results = is_staff or bool(assessment is None or assessment.show_results)
    reveal = attempt.status == AttemptStatus.graded and (
        is_staff or bool(assessment is not None and assessment.show_correct_answers)
    )

    questions: list[QuestionResult] | None = None
    if include_questions and show_results and attempt.status != AttemptStatus.in_progress:
        by_qid = {str(qa.question_id): qa for qa in attempt.question_attempts}
        questions = []
        for item in attempt.question_snapshot or []:
            qa = by_qid.get(str(item["id"]))
            if qa is None:
                continue
            questions.append(
                QuestionResult(
                    question_id=str(item["id"]),
                    type=str(item["type"]),
                    prompt=str(item.get("prompt") or ""),
                    answer=qa.answer,
                    is_correct=qa.is_correct,
                    points_earned=float(qa.points_earned or 0.0),
                    max_points=int(qa.max_points),
                    requires_manual_grading=bool(qa.requires_manual_grading),
                    graded_at=iso_utc(qa.graded_at),
                    instructor_feedback=qa.instructor_feedback,
                    correct_answers=item.get("correct_answers") if reveal else None,
                    explanation=item.get("explanation") if reveal else None,
                )
            )

    return AttemptResult(
        attempt_id=str(attempt.id),
        assessment_id=str(attempt.assessment_id),
        user_id=str(attempt.user_id),
        attempt_no=int(attempt.attempt_no),
        status=attempt.status.value,
        submit_trigger=attempt.submit_trigger.value if attempt.submit_trigger else None,
        started_at=iso_utc(attempt.started_at) or "",
        deadline_at=iso_utc(attempt.deadline_at),
        submitted_at=iso_utc(attempt.submitted_at),
        graded_at=iso_utc(attempt.graded_at),
        time_spent_seconds=attempt.time_spent_seconds,
        total_points=int(attempt.total_points or 0),
        earned_points=float(attempt.earned_points) if attempt.status == AttemptStatus.graded else None,
        score_percent=attempt.score_percent,
        passed=attempt.passed,
        questions=questions,
    )


@router.post("/{assessment_id}/start", response_model=AttemptStartResponse)
def start_attempt(
    assessment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="attempt_start", limit=30, window_seconds=60),
):
    attempt, created = attempt_service.start_attempt(db, user=user, assessment_id=assessment_id)
    return AttemptStartResponse(
        attempt_id=str(attempt.id),
        assessment_id=str(attempt.assessment_id),
        attempt_no=int(attempt.attempt_no),
        resumed=not created,
        started_at=iso_utc(attempt.started_at) or "",
        deadline_at=iso_utc(attempt.deadline_at),
        time_limit_minutes=attempt.time_limit_minutes,
        total_points=int(attempt.total_points or 0),
        questions=[QuestionPublic(**public_question(item)) for item in attempt.question_snapshot or []],
        answers=dict(attempt.answers or {}),
    )


@router.put("/attempts/{attempt_id}/answers/{question_id}", response_model=AnswerResponse)
def record_answer(
    attempt_id: str,
    question_id: str,
    payload: AnswerRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="attempt_answer", limit=240, window_seconds=60),
):
    attempt = attempt_service.record_answer(
        db,
        user=user,
        attempt_id=attempt_id,
        question_id=question_id,
        value=payload.value,
    )
    return AnswerResponse(attempt_id=str(attempt.id), question_id=question_id)


@router.post("/{assessment_id}/submit", response_model=AttemptResult)
def submit_for_assessment(
    assessment_id: str,
    payload: SubmitRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="attempt_submit", limit=20, window_seconds=60),
):
    attempt = attempt_service.submit_for_assessment(
        db,
        user=user,
        assessment_id=assessment_id,
        answers=payload.answers,
        attempt_id=payload.attempt_id,
    )
    return build_attempt_result(db, attempt, viewer=user)


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptResult)
def submit_attempt(
    attempt_id: str,
    payload: AttemptSubmitRequest | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="attempt_submit", limit=20, window_seconds=60),
):
    answers = payload.answers if payload is not None else None
    attempt = attempt_service.submit_attempt(db, user=user, attempt_id=attempt_id, answers=answers)
    return build_attempt_result(db, attempt, viewer=user)


@router.get("/attempts/{attempt_id}", response_model=AttemptResult)
def get_attempt(
    attempt_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    attempt = attempt_service.get_attempt(db, viewer=user, attempt_id=attempt_id)
    return build_attempt_result(db, attempt, viewer=user)


@router.get("/{assessment_id}/attempts", response_model=AttemptListResponse)
def list_my_attempts(
    assessment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items = attempt_service.list_user_attempts(db, user=user, assessment_id=assessment_id)
    return AttemptListResponse(
        assessment_id=assessment_id,
        attempts=[build_attempt_result(db, a, viewer=user, include_questions=False) for a in items],
    )
