from app.models.user import User, UserRole
from app.models.assessment import Assessment, Question, QuestionType
from app.models.attempt import AssessmentAttempt, AttemptStatus, QuestionAttempt, SubmitTrigger
from app.models.points import PointAward, PointAwardStatus
from app.models.audit import AttemptEvent, AttemptEventType

__all__ = [
    "User",
    "UserRole",
    "Assessment",
    "Question",
    "QuestionType",
    "AssessmentAttempt",
    "AttemptStatus",
    "QuestionAttempt",
    "SubmitTrigger",
    "PointAward",
    "PointAwardStatus",
    "AttemptEvent",
    "AttemptEventType",
]
