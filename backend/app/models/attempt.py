import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.assessment import JSONType


class AttemptStatus(str, enum.Enum):
    in_progress = "in_progress"
    submitted = "submitted"
    pending_manual_grading = "pending_manual_grading"
    graded = "graded"
    abandoned = "abandoned"


class SubmitTrigger(str, enum.Enum):
    manual = "manual"
    deadline = "deadline"


class AssessmentAttempt(Base):
    __tablename__ = "assessment_attempts"
    __table_args__ = (
        # At most one open attempt per learner and assessment.
        Index(
            "uq_assessment_attempts_open",
            "user_id",
            "assessment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assessment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("assessments.id"), index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)

    attempt_no: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[AttemptStatus] = mapped_column(Enum(AttemptStatus), index=True, default=AttemptStatus.in_progress)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    deadline_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submit_trigger: Mapped[SubmitTrigger | None] = mapped_column(Enum(SubmitTrigger), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Frozen at creation; later edits of the assessment do not affect this attempt.
    question_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    time_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    passing_score_percent: Mapped[int] = mapped_column(Integer, default=70)
    total_points: Mapped[int] = mapped_column(Integer, default=0)

    answers: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    earned_points: Mapped[float] = mapped_column(Float, default=0.0)
    score_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    time_spent_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    question_attempts: Mapped[list["QuestionAttempt"]] = relationship(
        back_populates="attempt",
        lazy="selectin",
    )


class QuestionAttempt(Base):
    __tablename__ = "question_attempts"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_question_attempt_attempt_question"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    attempt_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("assessment_attempts.id"), index=True)
    # No FK: the question may be edited or removed after the attempt snapshot was taken.
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)

    answer: Mapped[Any] = mapped_column(JSONType, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    points_earned: Mapped[float] = mapped_column(Float, default=0.0)
    max_points: Mapped[int] = mapped_column(Integer, default=0)

    requires_manual_grading: Mapped[bool] = mapped_column(Boolean, default=False)
    graded_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    instructor_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempt: Mapped[AssessmentAttempt] = relationship(back_populates="question_attempts")
