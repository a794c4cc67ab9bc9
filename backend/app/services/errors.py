from __future__ import annotations


class AssessmentError(Exception):
    """Base for failures surfaced to the caller with a specific error code."""

    error_code = "assessment_error"
    status_code = 400
    default_message = "request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AssessmentNotFound(AssessmentError):
    error_code = "assessment_not_found"
    status_code = 404
    default_message = "assessment not found"


class AttemptNotFound(AssessmentError):
    error_code = "attempt_not_found"
    status_code = 404
    default_message = "attempt not found"


class QuestionNotFound(AssessmentError):
    error_code = "question_not_found"
    status_code = 404
    default_message = "question is not part of this attempt"


class AssessmentUnavailable(AssessmentError):
    error_code = "assessment_unavailable"
    status_code = 409
    default_message = "assessment is not open for attempts"


class AttemptLimitExceeded(AssessmentError):
    error_code = "attempt_limit_exceeded"
    status_code = 409
    default_message = "maximum attempts reached"


class AttemptNotActive(AssessmentError):
    error_code = "attempt_not_active"
    status_code = 409
    default_message = "attempt is no longer in progress"


class AttemptNotGradable(AssessmentError):
    error_code = "attempt_not_gradable"
    status_code = 409
    default_message = "attempt has not been submitted yet"


class AttemptBusy(AssessmentError):
    error_code = "attempt_busy"
    status_code = 409
    default_message = "attempt is being updated, retry shortly"


class InvalidPoints(AssessmentError):
    error_code = "invalid_points"
    status_code = 422
    default_message = "points out of range"


class Unauthorized(AssessmentError):
    error_code = "forbidden"
    status_code = 403
    default_message = "not allowed to grade this attempt"
