"""Attempt lifecycle: start, answer, submit, deadline and abandonment.

Every mutation of an attempt runs under `attempt_lock` and re-reads the row
with FOR UPDATE, so a learner's manual submit and the server's deadline
submit resolve to whichever transition commits first. The deadline stored
at start is the only clock of record; nothing the client reports about
elapsed time is trusted.
"""

from __future__ import annotations

import logging
import random
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.audit_log import record_attempt_event
from app.core.config import settings
from app.core.locks import LockNotAcquired, attempt_lock, attempt_start_lock
from app.models.assessment import Assessment
from app.models.attempt import AssessmentAttempt, AttemptStatus, SubmitTrigger
from app.models.audit import AttemptEventType
from app.models.user import User, UserRole
from app.services.errors import (
    AssessmentNotFound,
    AssessmentUnavailable,
    AttemptBusy,
    AttemptLimitExceeded,
    AttemptNotActive,
    AttemptNotFound,
    QuestionNotFound,
)
from app.services.evaluator import snapshot_question
from app.services.points import dispatch_pending_awards
from app.services.scoring import score_attempt


log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_uuid(value, exc: type[Exception]) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise exc() from e


@contextmanager
def locked_attempt(attempt_id) -> Iterator[None]:
    try:
        with attempt_lock(attempt_id):
            yield
    except LockNotAcquired as e:
        raise AttemptBusy() from e


def get_assessment(db: Session, assessment_id) -> Assessment:
    aid = parse_uuid(assessment_id, AssessmentNotFound)
    assessment = db.get(Assessment, aid)
    if assessment is None:
        raise AssessmentNotFound()
    return assessment


def load_attempt(db: Session, attempt_id, *, for_update: bool = False) -> AssessmentAttempt:
    aid = parse_uuid(attempt_id, AttemptNotFound)
    stmt = select(AssessmentAttempt).where(AssessmentAttempt.id == aid)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    attempt = db.scalar(stmt)
    if attempt is None:
        raise AttemptNotFound()
    return attempt


def _load_owned_attempt(db: Session, attempt_id, user: User, *, for_update: bool = False) -> AssessmentAttempt:
    attempt = load_attempt(db, attempt_id, for_update=for_update)
    if attempt.user_id != user.id:
        # Same answer as a missing row so attempt ids cannot be probed.
        raise AttemptNotFound()
    return attempt


def can_view_attempt(db: Session, attempt: AssessmentAttempt, viewer: User) -> bool:
    if attempt.user_id == viewer.id or viewer.role == UserRole.admin:
        return True
    if viewer.role != UserRole.instructor:
        return False
    assessment = db.get(Assessment, attempt.assessment_id)
    return assessment is not None and assessment.instructor_id == viewer.id


def is_overdue(attempt: AssessmentAttempt, now: datetime | None = None) -> bool:
    if attempt.status != AttemptStatus.in_progress or attempt.deadline_at is None:
        return False
    return (now or _now()) > as_aware(attempt.deadline_at)


def is_stale(attempt: AssessmentAttempt, now: datetime | None = None) -> bool:
    """Untimed attempt left without activity past the grace window."""
    if attempt.status != AttemptStatus.in_progress or attempt.deadline_at is not None:
        return False
    last = as_aware(attempt.last_activity_at or attempt.started_at)
    grace = timedelta(hours=int(settings.abandoned_attempt_grace_hours))
    return (now or _now()) - last > grace


def _check_available(assessment: Assessment, now: datetime) -> None:
    if not assessment.is_published:
        raise AssessmentUnavailable()
    opens = as_aware(assessment.available_from)
    closes = as_aware(assessment.available_until)
    if opens is not None and now < opens:
        raise AssessmentUnavailable("assessment is not open yet")
    if closes is not None and now > closes:
        raise AssessmentUnavailable("assessment is closed")
    if not assessment.questions:
        raise AssessmentUnavailable("assessment has no questions")


def _submit_locked(db: Session, attempt: AssessmentAttempt, *, trigger: SubmitTrigger, now: datetime) -> None:
    # Caller holds the attempt lock and has checked status == in_progress.
    elapsed = max(0, int((now - as_aware(attempt.started_at)).total_seconds()))
    if trigger == SubmitTrigger.deadline and attempt.time_limit_minutes:
        elapsed = min(elapsed, int(attempt.time_limit_minutes) * 60)

    attempt.status = AttemptStatus.submitted
    attempt.submitted_at = now
    attempt.submit_trigger = trigger
    attempt.time_spent_seconds = elapsed
    attempt.last_activity_at = now

    record_attempt_event(
        db,
        attempt_id=attempt.id,
        event_type=AttemptEventType.attempt_submitted,
        actor_user_id=attempt.user_id if trigger == SubmitTrigger.manual else None,
        meta={"trigger": trigger.value, "time_spent_seconds": elapsed},
    )
    log.info("attempt submitted attempt_id=%s trigger=%s", attempt.id, trigger.value)

    score_attempt(db, attempt)


def enforce_deadline(db: Session, attempt_id) -> AssessmentAttempt:
    """Force-submit the attempt if its deadline has passed; otherwise a no-op."""
    with locked_attempt(attempt_id):
        attempt = load_attempt(db, attempt_id, for_update=True)
        now = _now()
        if not is_overdue(attempt, now):
            return attempt
        _submit_locked(db, attempt, trigger=SubmitTrigger.deadline, now=now)
        db.commit()
    dispatch_pending_awards(db, attempt_id=attempt.id)
    return attempt


def abandon_if_stale(db: Session, attempt_id) -> AssessmentAttempt:
    with locked_attempt(attempt_id):
        attempt = load_attempt(db, attempt_id, for_update=True)
        if not is_stale(attempt):
            return attempt
        attempt.status = AttemptStatus.abandoned
        record_attempt_event(db, attempt_id=attempt.id, event_type=AttemptEventType.attempt_abandoned)
        db.commit()
    log.info("attempt abandoned attempt_id=%s", attempt.id)
    return attempt


def _open_attempts(db: Session, *, user_id, assessment_id) -> list[AssessmentAttempt]:
    return list(
        db.scalars(
            select(AssessmentAttempt)
            .where(
                AssessmentAttempt.user_id == user_id,
                AssessmentAttempt.assessment_id == assessment_id,
                AssessmentAttempt.status == AttemptStatus.in_progress,
            )
            .order_by(AssessmentAttempt.started_at.desc())
        )
    )


def settle_open_attempts(db: Session, *, user_id, assessment_id) -> None:
    """Apply deadline and abandonment rules to the pair's open attempts."""
    now = _now()
    for attempt in _open_attempts(db, user_id=user_id, assessment_id=assessment_id):
        if is_overdue(attempt, now):
            enforce_deadline(db, attempt.id)
        elif is_stale(attempt, now):
            abandon_if_stale(db, attempt.id)


def start_attempt(db: Session, *, user: User, assessment_id) -> tuple[AssessmentAttempt, bool]:
    """Start (or resume) the user's attempt. Returns (attempt, created)."""
    assessment = get_assessment(db, assessment_id)
    now = _now()

    settle_open_attempts(db, user_id=user.id, assessment_id=assessment.id)

    try:
        with attempt_start_lock(user.id, assessment.id):
            open_attempts = _open_attempts(db, user_id=user.id, assessment_id=assessment.id)
            if open_attempts:
                return open_attempts[0], False

            _check_available(assessment, now)

            used = db.scalar(
                select(func.count(AssessmentAttempt.id)).where(
                    AssessmentAttempt.user_id == user.id,
                    AssessmentAttempt.assessment_id == assessment.id,
                    AssessmentAttempt.status != AttemptStatus.abandoned,
                )
            ) or 0
            if assessment.max_attempts is not None and used >= int(assessment.max_attempts):
                raise AttemptLimitExceeded()

            created_before = db.scalar(
                select(func.count(AssessmentAttempt.id)).where(
                    AssessmentAttempt.user_id == user.id,
                    AssessmentAttempt.assessment_id == assessment.id,
                )
            ) or 0

            snapshot = [snapshot_question(q) for q in assessment.questions]
            if assessment.shuffle_questions:
                random.shuffle(snapshot)

            limit = assessment.time_limit_minutes
            attempt = AssessmentAttempt(
                assessment_id=assessment.id,
                user_id=user.id,
                attempt_no=int(created_before) + 1,
                status=AttemptStatus.in_progress,
                started_at=now,
                deadline_at=(now + timedelta(minutes=int(limit))) if limit else None,
                last_activity_at=now,
                question_snapshot=snapshot,
                time_limit_minutes=limit,
                passing_score_percent=int(assessment.passing_score_percent),
                total_points=sum(int(item["points"]) for item in snapshot),
                answers={},
                earned_points=0.0,
            )
            db.add(attempt)
            db.flush()

            record_attempt_event(
                db,
                attempt_id=attempt.id,
                event_type=AttemptEventType.attempt_started,
                actor_user_id=user.id,
                meta={"attempt_no": attempt.attempt_no},
            )
            db.commit()
    except LockNotAcquired as e:
        raise AttemptBusy() from e

    log.info(
        "attempt started attempt_id=%s user_id=%s assessment_id=%s attempt_no=%s",
        attempt.id,
        user.id,
        assessment.id,
        attempt.attempt_no,
    )
    return attempt, True


def _snapshot_ids(attempt: AssessmentAttempt) -> set[str]:
    return {str(item["id"]) for item in attempt.question_snapshot or []}


def record_answer(db: Session, *, user: User, attempt_id, question_id, value: Any) -> AssessmentAttempt:
    """Store an answer, replacing any earlier one for the same question."""
    expired = False
    with locked_attempt(attempt_id):
        attempt = _load_owned_attempt(db, attempt_id, user, for_update=True)
        now = _now()

        if is_overdue(attempt, now):
            # Answers stored before the deadline are kept and scored.
            _submit_locked(db, attempt, trigger=SubmitTrigger.deadline, now=now)
            db.commit()
            expired = True
        else:
            if attempt.status != AttemptStatus.in_progress:
                raise AttemptNotActive()

            qid = str(question_id)
            if qid not in _snapshot_ids(attempt):
                raise QuestionNotFound()

            answers = dict(attempt.answers or {})
            answers[qid] = value
            # JSON columns only track reassignment, not in-place mutation.
            attempt.answers = answers
            attempt.last_activity_at = now
            db.commit()

    if expired:
        dispatch_pending_awards(db, attempt_id=attempt.id)
        raise AttemptNotActive("time limit reached; attempt was submitted")
    return attempt


def submit_attempt(
    db: Session,
    *,
    user: User,
    attempt_id,
    trigger: SubmitTrigger = SubmitTrigger.manual,
    answers: dict[str, Any] | None = None,
) -> AssessmentAttempt:
    """Submit an attempt and score it.

    Idempotent: an attempt that already left in_progress is returned as is,
    so a manual submit racing the deadline submit never scores twice. A
    manual submit arriving after the deadline is recorded as the deadline
    submission. Answers in its body still count while the request lands
    within LATE_SUBMIT_GRACE_SECONDS of the deadline; past that only the
    answers stored in time are scored.
    """
    with locked_attempt(attempt_id):
        attempt = _load_owned_attempt(db, attempt_id, user, for_update=True)
        if attempt.status == AttemptStatus.abandoned:
            raise AttemptNotActive("attempt was abandoned")
        if attempt.status != AttemptStatus.in_progress:
            return attempt

        now = _now()
        if trigger == SubmitTrigger.manual and is_overdue(attempt, now):
            log.info("late manual submit converted to deadline submit attempt_id=%s", attempt.id)
            trigger = SubmitTrigger.deadline
            grace = timedelta(seconds=max(0, settings.late_submit_grace_seconds))
            if now > as_aware(attempt.deadline_at) + grace:
                answers = None

        if answers:
            known = _snapshot_ids(attempt)
            merged = dict(attempt.answers or {})
            for qid, value in answers.items():
                if str(qid) not in known:
                    raise QuestionNotFound()
                merged[str(qid)] = value
            attempt.answers = merged

        _submit_locked(db, attempt, trigger=trigger, now=now)
        db.commit()

    dispatch_pending_awards(db, attempt_id=attempt.id)
    return attempt


def submit_for_assessment(
    db: Session,
    *,
    user: User,
    assessment_id,
    answers: dict[str, Any] | None = None,
    attempt_id=None,
) -> AssessmentAttempt:
    assessment = get_assessment(db, assessment_id)

    if attempt_id is not None:
        attempt = _load_owned_attempt(db, attempt_id, user)
        if attempt.assessment_id != assessment.id:
            raise AttemptNotFound()
        return submit_attempt(db, user=user, attempt_id=attempt.id, answers=answers)

    open_attempts = _open_attempts(db, user_id=user.id, assessment_id=assessment.id)
    if open_attempts:
        return submit_attempt(db, user=user, attempt_id=open_attempts[0].id, answers=answers)

    # Nothing open: a repeated submit gets the latest result back.
    latest = db.scalar(
        select(AssessmentAttempt)
        .where(
            AssessmentAttempt.user_id == user.id,
            AssessmentAttempt.assessment_id == assessment.id,
            AssessmentAttempt.status != AttemptStatus.abandoned,
        )
        .order_by(AssessmentAttempt.started_at.desc())
        .limit(1)
    )
    if latest is None:
        raise AttemptNotFound("no attempt started for this assessment")
    return latest


def get_attempt(db: Session, *, viewer: User, attempt_id) -> AssessmentAttempt:
    attempt = load_attempt(db, attempt_id)
    if not can_view_attempt(db, attempt, viewer):
        raise AttemptNotFound()
    if is_overdue(attempt):
        attempt = enforce_deadline(db, attempt.id)
    return attempt


def list_user_attempts(db: Session, *, user: User, assessment_id) -> list[AssessmentAttempt]:
    assessment = get_assessment(db, assessment_id)
    settle_open_attempts(db, user_id=user.id, assessment_id=assessment.id)
    return list(
        db.scalars(
            select(AssessmentAttempt)
            .where(
                AssessmentAttempt.user_id == user.id,
                AssessmentAttempt.assessment_id == assessment.id,
            )
            .order_by(AssessmentAttempt.started_at.desc())
        )
    )


def expire_overdue_attempts(db: Session, *, limit: int = 500) -> int:
    """Sweep: deadline-submit every overdue attempt. Returns how many were submitted."""
    now = _now()
    ids = db.scalars(
        select(AssessmentAttempt.id)
        .where(
            AssessmentAttempt.status == AttemptStatus.in_progress,
            AssessmentAttempt.deadline_at.is_not(None),
            AssessmentAttempt.deadline_at < now,
        )
        .limit(int(limit))
    ).all()

    n = 0
    for attempt_id in ids:
        try:
            attempt = enforce_deadline(db, attempt_id)
        except AttemptBusy:
            # A request is already handling it.
            continue
        if attempt.status != AttemptStatus.in_progress:
            n += 1
    return n


def abandon_stale_attempts(db: Session, *, limit: int = 500) -> int:
    cutoff = _now() - timedelta(hours=int(settings.abandoned_attempt_grace_hours))
    ids = db.scalars(
        select(AssessmentAttempt.id)
        .where(
            AssessmentAttempt.status == AttemptStatus.in_progress,
            AssessmentAttempt.deadline_at.is_(None),
            func.coalesce(AssessmentAttempt.last_activity_at, AssessmentAttempt.started_at) < cutoff,
        )
        .limit(int(limit))
    ).all()

    n = 0
    for attempt_id in ids:
        try:
            attempt = abandon_if_stale(db, attempt_id)
        except AttemptBusy:
            continue
        if attempt.status == AttemptStatus.abandoned:
            n += 1
    return n
