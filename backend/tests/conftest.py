import sys
from pathlib import Path
import uuid
import time

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import session as session_module
from app.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
from app.models.user import User, UserRole
from app.models.assessment import Assessment, Question, QuestionType
from app.models.attempt import AssessmentAttempt, QuestionAttempt  # noqa: F401
from app.models.points import PointAward  # noqa: F401
from app.models.audit import AttemptEvent  # noqa: F401


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (str(value), exp)
        return True

    def delete(self, key: str):
        return 1 if self._data.pop(key, None) is not None else 0

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def flushall(self):
        self._data.clear()
        return True


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)

# Job modules open their own sessions.
import app.services.point_award_jobs as point_award_jobs_module
point_award_jobs_module.SessionLocal = session_module.SessionLocal

import app.services.attempt_sweep_jobs as attempt_sweep_jobs_module
attempt_sweep_jobs_module.SessionLocal = session_module.SessionLocal


# Stub Redis at import time (rate limiting + attempt locks + sweep lock).
_mem_redis = _MemoryRedis()
import app.core.redis_client as redis_client_module
redis_client_module.get_redis = lambda: _mem_redis

import app.core.rate_limit as rate_limit_module
rate_limit_module.get_redis = lambda: _mem_redis

import app.core.locks as locks_module
locks_module.get_redis = lambda: _mem_redis

import app.routers.health as health_router_module
health_router_module.get_redis = lambda: _mem_redis


@pytest.fixture()
def redis_fake():
    return _mem_redis


@pytest.fixture(autouse=True)
def _isolate_redis_and_queue(monkeypatch):
    # Fresh rate-limit windows per test; RQ replaced by a recorder.
    _mem_redis.flushall()

    calls: list[tuple[str, str, tuple]] = []

    def _fake_enqueue(queue_name, func, *args, retries=0, **kwargs):
        calls.append((str(queue_name), getattr(func, "__name__", str(func)), args))
        return f"job-{len(calls)}"

    import app.services.points as points_module

    monkeypatch.setattr(points_module, "enqueue_job", _fake_enqueue)
    monkeypatch.setattr(health_router_module, "enqueue_job", _fake_enqueue)
    yield calls


@pytest.fixture()
def enqueued(_isolate_redis_and_queue):
    return _isolate_redis_and_queue


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def make_user(db):
    def _make(role: UserRole = UserRole.learner) -> User:
        user = User(name=f"{role.value}_{uuid.uuid4().hex[:8]}", role=role, password_hash="!")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def learner(make_user):
    return make_user(UserRole.learner)


@pytest.fixture()
def instructor(make_user):
    return make_user(UserRole.instructor)


def headers_for(user: User) -> dict:
    from app.routers.auth import create_access_token

    token = create_access_token(user_id=str(user.id), role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


def standard_questions(*, with_essay: bool = False) -> list[dict]:
    """Ten auto-graded points; an essay adds ten manual points."""
    items = [
        dict(type=QuestionType.multiple_choice, prompt="2 + 2 = ?", points=4, options=["3", "4", "5"], correct_answers=1),
        dict(type=QuestionType.true_false, prompt="Water is wet.", points=2, correct_answers=True),
        dict(type=QuestionType.short_answer, prompt="Capital of France?", points=2, correct_answers=["Paris"]),
        dict(
            type=QuestionType.fill_blank,
            prompt="Roses are __, violets are __.",
            points=2,
            correct_answers=["red", "blue"],
        ),
    ]
    if with_essay:
        items.append(dict(type=QuestionType.essay, prompt="Explain recursion.", points=10, correct_answers=None))
    return items


CORRECT_ANSWERS = [1, True, " paris ", ["Red", "BLUE"]]


@pytest.fixture()
def make_assessment(db, instructor):
    def _make(*, questions: list[dict] | None = None, owner: User | None = None, **fields) -> Assessment:
        assessment = Assessment(
            title=fields.pop("title", "Unit test assessment"),
            instructor_id=(owner or instructor).id,
            **fields,
        )
        db.add(assessment)
        db.flush()
        for i, q in enumerate(questions if questions is not None else standard_questions()):
            db.add(Question(assessment_id=assessment.id, order_index=i, **q))
        db.commit()
        db.refresh(assessment)
        return assessment

    return _make


def answers_by_order(assessment: Assessment, values: list) -> dict[str, object]:
    """Map answer values onto question ids in authoring order."""
    return {str(q.id): v for q, v in zip(assessment.questions, values)}
