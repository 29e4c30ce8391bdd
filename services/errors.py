"""Error kinds raised by the assessment engine.

Each kind carries the HTTP status the API layer answers with, so route handlers
can let them propagate untouched.
"""


class AssessmentError(Exception):
    status_code = 400
    code = "assessment_error"

    def __init__(self, message=None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls):
        return cls.__name__


class ValidationError(AssessmentError):
    status_code = 422
    code = "validation_error"


class NotFound(AssessmentError):
    status_code = 404
    code = "not_found"


class Forbidden(AssessmentError):
    status_code = 403
    code = "forbidden"


class NotAccessible(AssessmentError):
    status_code = 403
    code = "not_accessible"


class AlreadySubmitted(AssessmentError):
    status_code = 409
    code = "already_submitted"


class NotInProgress(AssessmentError):
    status_code = 409
    code = "not_in_progress"


class SessionClosed(AssessmentError):
    status_code = 409
    code = "session_closed"


class AttemptLimitExceeded(AssessmentError):
    status_code = 409
    code = "attempt_limit_exceeded"


class UnknownQuestion(AssessmentError):
    status_code = 400
    code = "unknown_question"


class RateLimitExceeded(AssessmentError):
    status_code = 429
    code = "rate_limited"


class JudgeUnavailable(AssessmentError):
    """The execution service could not be reached or refused the request.

    Never translate this into a zero score; callers surface it so the student
    can retry once the judge is back.
    """
    status_code = 503
    code = "judge_unavailable"


class JudgeTimeout(AssessmentError):
    status_code = 504
    code = "judge_timeout"


class JudgeRejected(ValidationError):
    """The execution service refused the submission itself (a 4xx answer). Retrying will not help."""
    code = "judge_rejected"
