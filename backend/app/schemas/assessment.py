from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class QuestionPublic(BaseModel):
    id: str
    type: str
    prompt: str
    points: int
    options: list[str] | None = None
    multiple: bool = False
    blanks: int | None = None


class AttemptStartResponse(BaseModel):
    attempt_id: str
    assessment_id: str
    attempt_no: int
    resumed: bool
    started_at: str
    deadline_at: str | None
    time_limit_minutes: int | None
    total_points: int
    questions: list[QuestionPublic]
    answers: dict[str, Any]


class AnswerRequest(BaseModel):
    # Shape depends on the question type: index, list of indices, bool, text or list of texts.
    value: Any = None


class AnswerResponse(BaseModel):
    ok: bool = True
    attempt_id: str
    question_id: str


class SubmitRequest(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)
    attempt_id: str | None = None


class AttemptSubmitRequest(BaseModel):
    answers: dict[str, Any] | None = None


class QuestionResult(BaseModel):
    question_id: str
    type: str
    prompt: str
    answer: Any = None
    is_correct: bool | None
    points_earned: float
    max_points: int
    requires_manual_grading: bool
    graded_at: str | None = None
    instructor_feedback: str | None = None
    correct_answers: Any = None
    explanation: str | None = None


class AttemptResult(BaseModel):
    attempt_id: str
    assessment_id: str
    user_id: str
    attempt_no: int
    status: str
    submit_trigger: str | None
    started_at: str
    deadline_at: str | None
    submitted_at: str | None
    graded_at: str | None
    time_spent_seconds: int | None
    total_points: int
    earned_points: float | None
    score_percent: float | None
    passed: bool | None
    questions: list[QuestionResult] | None = None


class AttemptListResponse(BaseModel):
    assessment_id: str
    attempts: list[AttemptResult]
