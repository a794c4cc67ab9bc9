"""create assessment core

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-12

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


question_type_enum = sa.Enum(
    "multiple_choice",
    "true_false",
    "short_answer",
    "fill_blank",
    "essay",
    name="questiontype",
)
attempt_status_enum = sa.Enum(
    "in_progress",
    "submitted",
    "pending_manual_grading",
    "graded",
    "abandoned",
    name="attemptstatus",
)
submit_trigger_enum = sa.Enum("manual", "deadline", name="submittrigger")
point_award_status_enum = sa.Enum("pending", "published", "skipped", "failed", name="pointawardstatus")
attempt_event_type_enum = sa.Enum(
    "attempt_started",
    "attempt_submitted",
    "attempt_graded",
    "question_graded",
    "attempt_abandoned",
    name="attempteventtype",
)


def upgrade() -> None:
    op.create_table(
        "assessments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("instructor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("time_limit_minutes", sa.Integer(), nullable=True),
        sa.Column("passing_score_percent", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("shuffle_questions", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("show_results", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("show_correct_answers", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("points_reward", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("available_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_assessments_course_id", "assessments", ["course_id"], unique=False)
    op.create_index("ix_assessments_instructor_id", "assessments", ["instructor_id"], unique=False)

    op.create_table(
        "questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("assessment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessments.id"), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", question_type_enum, nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False, server_default=""),
        sa.Column("points", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("options", postgresql.JSONB(), nullable=True),
        sa.Column("correct_answers", postgresql.JSONB(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.CheckConstraint("points > 0", name="ck_questions_points_positive"),
    )
    op.create_index("ix_questions_assessment_id", "questions", ["assessment_id"], unique=False)
    op.create_index("ix_questions_type", "questions", ["type"], unique=False)

    op.create_table(
        "assessment_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("assessment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessments.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", attempt_status_enum, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submit_trigger", submit_trigger_enum, nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("question_snapshot", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("time_limit_minutes", sa.Integer(), nullable=True),
        sa.Column("passing_score_percent", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("answers", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("earned_points", sa.Float(), nullable=False, server_default="0"),
        sa.Column("score_percent", sa.Float(), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=True),
    )
    op.create_index("ix_assessment_attempts_assessment_id", "assessment_attempts", ["assessment_id"], unique=False)
    op.create_index("ix_assessment_attempts_user_id", "assessment_attempts", ["user_id"], unique=False)
    op.create_index("ix_assessment_attempts_status", "assessment_attempts", ["status"], unique=False)
    op.create_index("ix_assessment_attempts_deadline_at", "assessment_attempts", ["deadline_at"], unique=False)
    op.create_index(
        "uq_assessment_attempts_open",
        "assessment_attempts",
        ["user_id", "assessment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "question_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("answer", postgresql.JSONB(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("points_earned", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_manual_grading", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("graded_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("instructor_feedback", sa.Text(), nullable=True),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_question_attempt_attempt_question"),
    )
    op.create_index("ix_question_attempts_attempt_id", "question_attempts", ["attempt_id"], unique=False)
    op.create_index("ix_question_attempts_question_id", "question_attempts", ["question_id"], unique=False)

    op.create_table(
        "point_awards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assessment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessments.id"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("first_attempt_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(length=64), nullable=False, server_default="assessment_passed"),
        sa.Column("status", point_award_status_enum, nullable=False),
        sa.Column("publish_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("attempt_id", name="uq_point_awards_attempt_id"),
    )
    op.create_index("ix_point_awards_user_id", "point_awards", ["user_id"], unique=False)
    op.create_index("ix_point_awards_assessment_id", "point_awards", ["assessment_id"], unique=False)
    op.create_index("ix_point_awards_status", "point_awards", ["status"], unique=False)

    op.create_table(
        "attempt_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("actor_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", attempt_event_type_enum, nullable=False),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=80), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_attempt_events_attempt_id", "attempt_events", ["attempt_id"], unique=False)
    op.create_index("ix_attempt_events_actor_user_id", "attempt_events", ["actor_user_id"], unique=False)
    op.create_index("ix_attempt_events_type", "attempt_events", ["type"], unique=False)


def downgrade() -> None:
    op.drop_table("attempt_events")
    op.drop_table("point_awards")
    op.drop_table("question_attempts")
    op.drop_table("assessment_attempts")
    op.drop_table("questions")
    op.drop_table("assessments")

    op.execute("DROP TYPE IF EXISTS attempteventtype")
    op.execute("DROP TYPE IF EXISTS pointawardstatus")
    op.execute("DROP TYPE IF EXISTS submittrigger")
    op.execute("DROP TYPE IF EXISTS attemptstatus")
    op.execute("DROP TYPE IF EXISTS questiontype")
