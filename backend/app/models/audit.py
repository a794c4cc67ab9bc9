import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AttemptEventType(str, enum.Enum):
    attempt_started = "attempt_started"
    attempt_submitted = "attempt_submitted"
    attempt_graded = "attempt_graded"
    question_graded = "question_graded"
    attempt_abandoned = "attempt_abandoned"


class AttemptEvent(Base):
    __tablename__ = "attempt_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    attempt_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("assessment_attempts.id"), index=True)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)

    type: Mapped[AttemptEventType] = mapped_column(Enum(AttemptEventType), index=True)
    meta: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Filled for events written from an HTTP request (instructor grading).
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(80), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
