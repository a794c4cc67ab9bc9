import pytest
from sqlalchemy import func, select

from app.models.attempt import AttemptStatus
from app.models.audit import AttemptEvent, AttemptEventType
from app.models.points import PointAward
from app.models.user import UserRole
from app.services import attempts as attempt_service
from app.services.errors import AttemptNotGradable, InvalidPoints, QuestionNotFound, Unauthorized
from app.services.manual_grading import GradingQueue, grade_question
from app.services.scoring import compute_score_percent

from conftest import CORRECT_ANSWERS, answers_by_order, standard_questions


@pytest.mark.parametrize(
    "earned,total,expected",
    [
        (7, 10, 70.0),
        (2, 3, 66.7),
        (0, 10, 0.0),
        (0, 0, 0.0),
        (12, 10, 100.0),
    ],
)
def test_compute_score_percent(earned, total, expected):
    assert compute_score_percent(earned, total) == expected


def test_pass_threshold_is_inclusive(db, learner, make_assessment):
    assessment = make_assessment(passing_score_percent=60)
    attempt, _ = attempt_service.start_attempt(db, user=learner, assessment_id=assessment.id)

    # MC (4) + true/false (2) of 10 points.
    answers = answers_by_order(assessment, [1, True, "wrong", ["x", "y"]])
    result = attempt_service.submit_attempt(db, user=learner, attempt_id=attempt.id, answers=answers)

    assert result.score_percent == 60.0
    assert result.passed is True


def _essay_attempt(db, learner, make_assessment, *, essay_answer="Recursion is a function calling itself.", **fields):
    assessment = make_assessment(questions=standard_questions(with_essay=True), **fields)
    attempt, _ = attempt_service.start_attempt(db, user=learner, assessment_id=assessment.id)
    answers = answers_by_order(assessment, CORRECT_ANSWERS + [essay_answer])
    attempt = attempt_service.submit_attempt(db, user=learner, attempt_id=attempt.id, answers=answers)
    essay_id = assessment.questions[-1].id
    return assessment, attempt, essay_id


def test_essay_routes_attempt_to_manual_grading(db, learner, instructor, make_user, make_assessment):
    assessment, attempt, _ = _essay_attempt(db, learner, make_assessment)

    assert attempt.status == AttemptStatus.pending_manual_grading
    assert attempt.passed is None
    assert attempt.score_percent is None
    assert attempt.earned_points == 10.0

    queue = GradingQueue(db)
    assert [a.id for a in queue.pending_for(instructor)] == [attempt.id]
    assert len(queue.ungraded_questions(attempt)) == 1

    other = make_user(UserRole.instructor)
    assert queue.pending_for(other) == []

    admin = make_user(UserRole.admin)
    assert attempt.id in [a.id for a in queue.pending_for(admin, assessment_id=assessment.id)]


def test_blank_essay_is_not_queued(db, learner, make_assessment):
    _, attempt, _ = _essay_attempt(db, learner, make_assessment, essay_answer="   ")

    assert attempt.status == AttemptStatus.graded
    assert attempt.score_percent == 50.0
    assert attempt.passed is False


def test_grading_last_manual_question_finalizes(db, learner, instructor, make_assessment):
    _, attempt, essay_id = _essay_attempt(db, learner, make_assessment)

    graded = grade_question(
        db,
        grader=instructor,
        attempt_id=attempt.id,
        question_id=essay_id,
        points_earned=7,
        feedback="Good, but add an example.",
    )

    assert graded.status == AttemptStatus.graded
    assert graded.earned_points == 17.0
    assert graded.score_percent == 85.0
    assert graded.passed is True
    assert graded.graded_at is not None

    qa = next(q for q in graded.question_attempts if q.question_id == essay_id)
    assert qa.graded_by == instructor.id
    assert qa.instructor_feedback == "Good, but add an example."
    assert qa.is_correct is False

    assert db.scalar(select(func.count(PointAward.id)).where(PointAward.attempt_id == attempt.id)) == 1
    events = db.scalar(
        select(func.count(AttemptEvent.id)).where(
            AttemptEvent.attempt_id == attempt.id,
            AttemptEvent.type == AttemptEventType.question_graded,
            AttemptEvent.actor_user_id == instructor.id,
        )
    )
    assert events == 1


def test_regrade_flips_verdict_but_never_duplicates_award(db, learner, instructor, make_assessment):
    _, attempt, essay_id = _essay_attempt(db, learner, make_assessment)

    grade_question(db, grader=instructor, attempt_id=attempt.id, question_id=essay_id, points_earned=10)
    db.refresh(attempt)
    assert attempt.passed is True

    grade_question(db, grader=instructor, attempt_id=attempt.id, question_id=essay_id, points_earned=0)
    db.refresh(attempt)
    assert attempt.status == AttemptStatus.graded
    assert attempt.score_percent == 50.0
    assert attempt.passed is False

    grade_question(db, grader=instructor, attempt_id=attempt.id, question_id=essay_id, points_earned=10)
    db.refresh(attempt)
    assert attempt.passed is True

    assert db.scalar(select(func.count(PointAward.id)).where(PointAward.attempt_id == attempt.id)) == 1


@pytest.mark.parametrize("points", [-1, 10.5, float("nan")])
def test_points_outside_range_are_rejected(db, learner, instructor, make_assessment, points):
    _, attempt, essay_id = _essay_attempt(db, learner, make_assessment)

    with pytest.raises(InvalidPoints):
        grade_question(db, grader=instructor, attempt_id=attempt.id, question_id=essay_id, points_earned=points)

    db.refresh(attempt)
    assert attempt.status == AttemptStatus.pending_manual_grading


def test_only_the_owning_instructor_or_admin_may_grade(db, learner, make_user, make_assessment):
    _, attempt, essay_id = _essay_attempt(db, learner, make_assessment)

    with pytest.raises(Unauthorized):
        grade_question(
            db, grader=make_user(UserRole.instructor), attempt_id=attempt.id, question_id=essay_id, points_earned=5
        )
    with pytest.raises(Unauthorized):
        grade_question(db, grader=learner, attempt_id=attempt.id, question_id=essay_id, points_earned=5)

    graded = grade_question(
        db, grader=make_user(UserRole.admin), attempt_id=attempt.id, question_id=essay_id, points_earned=5
    )
    assert graded.status == AttemptStatus.graded


def test_in_progress_attempt_is_not_gradable(db, learner, instructor, make_assessment):
    assessment = make_assessment(questions=standard_questions(with_essay=True))
    attempt, _ = attempt_service.start_attempt(db, user=learner, assessment_id=assessment.id)

    with pytest.raises(AttemptNotGradable):
        grade_question(
            db, grader=instructor, attempt_id=attempt.id, question_id=assessment.questions[-1].id, points_earned=1
        )


def test_unknown_question_on_attempt(db, learner, instructor, make_assessment):
    _, attempt, _ = _essay_attempt(db, learner, make_assessment)
    with pytest.raises(QuestionNotFound):
        grade_question(
            db,
            grader=instructor,
            attempt_id=attempt.id,
            question_id="00000000-0000-0000-0000-000000000000",
            points_earned=1,
        )
