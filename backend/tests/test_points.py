import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from app.core.config import settings
from app.models.points import PointAward, PointAwardStatus
from app.services import attempts as attempt_service
from app.services import point_award_jobs
from app.services.attempt_sweep_jobs import attempt_sweep_job
from app.services.points import requeue_stale_awards

from conftest import CORRECT_ANSWERS, answers_by_order


def _pass(db, user, assessment):
    attempt, _ = attempt_service.start_attempt(db, user=user, assessment_id=assessment.id)
    return attempt_service.submit_attempt(
        db, user=user, attempt_id=attempt.id, answers=answers_by_order(assessment, CORRECT_ANSWERS)
    )


def _fail(db, user, assessment):
    attempt, _ = attempt_service.start_attempt(db, user=user, assessment_id=assessment.id)
    return attempt_service.submit_attempt(db, user=user, attempt_id=attempt.id, answers={})


def _award_for(db, attempt) -> PointAward | None:
    return db.scalar(select(PointAward).where(PointAward.attempt_id == attempt.id))


def test_first_attempt_pass_earns_bonus_and_is_dispatched(db, learner, make_assessment, enqueued):
    assessment = make_assessment(points_reward=50)
    attempt = _pass(db, learner, assessment)

    award = _award_for(db, attempt)
    assert award is not None
    assert award.points == 50 + settings.first_attempt_bonus_points
    assert award.first_attempt_bonus == settings.first_attempt_bonus_points
    assert award.reason == "assessment_passed"
    assert award.status == PointAwardStatus.pending

    assert (settings.rq_queue_points, "publish_point_award_job", (str(award.id),)) in enqueued


def test_later_attempt_pass_has_no_bonus(db, learner, make_assessment):
    assessment = make_assessment(points_reward=30)
    failed = _fail(db, learner, assessment)
    passed = _pass(db, learner, assessment)

    assert _award_for(db, failed) is None
    award = _award_for(db, passed)
    assert award.points == 30
    assert award.first_attempt_bonus == 0


def test_failed_attempt_enqueues_nothing(db, learner, make_assessment, enqueued):
    _fail(db, learner, make_assessment())
    assert enqueued == []


def test_publish_without_ledger_marks_skipped(db, learner, make_assessment, monkeypatch):
    monkeypatch.setattr(settings, "points_ledger_url", None)
    award = _award_for(db, _pass(db, learner, make_assessment()))

    result = point_award_jobs.publish_point_award_job(str(award.id))

    assert result["status"] == "skipped"
    db.refresh(award)
    assert award.status == PointAwardStatus.skipped


def _mock_ledger(monkeypatch, handler):
    real_client = httpx.Client

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(point_award_jobs.httpx, "Client", _client)
    monkeypatch.setattr(settings, "points_ledger_url", "https://ledger.test/events")
    monkeypatch.setattr(settings, "points_ledger_token", "ledger-token")


def test_publish_posts_event_with_idempotency_key(db, learner, make_assessment, monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"ok": True})

    _mock_ledger(monkeypatch, handler)
    attempt = _pass(db, learner, make_assessment())
    award = _award_for(db, attempt)

    first = point_award_jobs.publish_point_award_job(str(award.id))
    again = point_award_jobs.publish_point_award_job(str(award.id))

    assert first["status"] == "published"
    assert again.get("already") is True
    assert len(seen) == 1

    req = seen[0]
    assert req.headers["Idempotency-Key"] == str(award.id)
    assert req.headers["Authorization"] == "Bearer ledger-token"
    assert json.loads(req.content) == {
        "userId": str(learner.id),
        "points": award.points,
        "reason": "assessment_passed",
        "assessmentId": str(attempt.assessment_id),
        "attemptId": str(attempt.id),
    }

    db.refresh(award)
    assert award.status == PointAwardStatus.published
    assert award.published_at is not None


def test_ledger_failure_is_recorded_and_reraised(db, learner, make_assessment, monkeypatch):
    _mock_ledger(monkeypatch, lambda request: httpx.Response(503))
    award = _award_for(db, _pass(db, learner, make_assessment()))

    with pytest.raises(httpx.HTTPStatusError):
        point_award_jobs.publish_point_award_job(str(award.id))

    db.refresh(award)
    assert award.status == PointAwardStatus.failed
    assert award.publish_attempts == 1
    assert "503" in (award.last_error or "")


def test_stale_awards_are_requeued(db, learner, make_assessment, enqueued):
    award = _award_for(db, _pass(db, learner, make_assessment()))
    award.status = PointAwardStatus.failed
    award.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db.commit()
    enqueued.clear()

    assert requeue_stale_awards(db) >= 1
    assert any(args == (str(award.id),) for _, _, args in enqueued)


def test_sweep_job_reports_counts(db, learner, make_assessment):
    assessment = make_assessment(time_limit_minutes=1)
    attempt, _ = attempt_service.start_attempt(db, user=learner, assessment_id=assessment.id)
    attempt.started_at = attempt.started_at - timedelta(minutes=3)
    attempt.deadline_at = attempt.deadline_at - timedelta(minutes=3)
    db.commit()

    result = attempt_sweep_job()

    assert result["ok"] is True
    assert result["expired"] >= 1
    db.refresh(attempt)
    assert attempt.submit_trigger is not None
