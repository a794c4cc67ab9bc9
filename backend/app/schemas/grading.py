from __future__ import annotations

from pydantic import BaseModel, Field

from app.schemas.assessment import AttemptResult


class GradeRequest(BaseModel):
    points_earned: float
    feedback: str | None = Field(default=None, max_length=5000)


class PendingQuestion(BaseModel):
    question_id: str
    prompt: str
    answer: str | None
    max_points: int


class GradingQueueItem(BaseModel):
    attempt_id: str
    assessment_id: str
    assessment_title: str
    course_id: str | None
    user_id: str
    user_name: str
    attempt_no: int
    submitted_at: str | None
    pending_questions: list[PendingQuestion]


class GradingQueueResponse(BaseModel):
    items: list[GradingQueueItem]
    total: int


class InstructorAttemptsPage(BaseModel):
    assessment_id: str
    page: int
    limit: int
    total: int
    items: list[AttemptResult]


class AssessmentAnalyticsResponse(BaseModel):
    assessment_id: str
    total_attempts: int
    completed_attempts: int
    pending_manual_grading: int
    passed_attempts: int
    pass_rate: float
    average_score: float
    average_time_spent_seconds: float
    question_count: int
    total_points: int


class QuestionAnalyticsRow(BaseModel):
    question_id: str
    order_index: int
    type: str
    prompt: str
    points: int
    answered_count: int
    correct_count: int
    correct_rate: float
    average_points: float


class QuestionAnalyticsResponse(BaseModel):
    assessment_id: str
    questions: list[QuestionAnalyticsRow]
