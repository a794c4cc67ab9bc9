from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt, AttemptStatus, QuestionAttempt
from app.services.evaluator import is_blank


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100.0, 1) if whole else 0.0


def assessment_analytics(db: Session, assessment: Assessment) -> dict:
    """Attempt totals for one assessment.

    Completed means graded; averages are over graded attempts only, so an
    attempt waiting on manual grading does not drag the mean toward zero.
    """
    by_status = dict(
        db.execute(
            select(AssessmentAttempt.status, func.count(AssessmentAttempt.id))
            .where(AssessmentAttempt.assessment_id == assessment.id)
            .group_by(AssessmentAttempt.status)
        ).all()
    )
    total = sum(int(n) for n in by_status.values())
    completed = int(by_status.get(AttemptStatus.graded, 0))
    pending = int(by_status.get(AttemptStatus.pending_manual_grading, 0))

    passed, avg_score, avg_time = db.execute(
        select(
            func.count(AssessmentAttempt.id).filter(AssessmentAttempt.passed.is_(True)),
            func.avg(AssessmentAttempt.score_percent),
            func.avg(AssessmentAttempt.time_spent_seconds),
        ).where(
            AssessmentAttempt.assessment_id == assessment.id,
            AssessmentAttempt.status == AttemptStatus.graded,
        )
    ).one()

    return {
        "assessment_id": str(assessment.id),
        "total_attempts": total,
        "completed_attempts": completed,
        "pending_manual_grading": pending,
        "passed_attempts": int(passed or 0),
        "pass_rate": _rate(int(passed or 0), completed),
        "average_score": round(float(avg_score or 0.0), 1),
        "average_time_spent_seconds": round(float(avg_time or 0.0), 1),
        "question_count": len(assessment.questions),
        "total_points": sum(int(q.points) for q in assessment.questions),
    }


def question_analytics(db: Session, assessment: Assessment) -> list[dict]:
    rows = db.scalars(
        select(QuestionAttempt)
        .join(AssessmentAttempt, AssessmentAttempt.id == QuestionAttempt.attempt_id)
        .where(AssessmentAttempt.assessment_id == assessment.id)
    ).all()

    stats: dict = {}
    for qa in rows:
        if is_blank(qa.answer):
            continue
        s = stats.setdefault(qa.question_id, {"answered": 0, "correct": 0, "points": 0.0})
        s["answered"] += 1
        if qa.is_correct:
            s["correct"] += 1
        s["points"] += float(qa.points_earned or 0.0)

    out: list[dict] = []
    for q in assessment.questions:
        s = stats.get(q.id, {"answered": 0, "correct": 0, "points": 0.0})
        answered = s["answered"]
        out.append(
            {
                "question_id": str(q.id),
                "order_index": int(q.order_index),
                "type": q.type.value,
                "prompt": q.prompt,
                "points": int(q.points),
                "answered_count": answered,
                "correct_count": s["correct"],
                "correct_rate": _rate(s["correct"], answered),
                "average_points": round(s["points"] / answered, 2) if answered else 0.0,
            }
        )
    return out
