# exams/exceptions.py
from rest_framework import status
from rest_framework.exceptions import APIException


class EngineError(APIException):
    """
    Rejection carrying a machine-readable reason code.

    Rendered by DRF as {"error": <code>, "message": <text>, **extra}.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request rejected."
    default_code = "rejected"

    def __init__(self, reason, message=None, **extra):
        self.reason = reason
        self.extra = extra
        body = {"error": reason, "message": message or self.default_detail}
        body.update(extra)
        super().__init__(detail=body, code=reason)


class PolicyViolation(EngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed by the test's rules."
    default_code = "policy_violation"


class Conflict(EngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"
    default_code = "conflict"


class ConsistencyViolation(EngineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The record is not in a state that allows this."
    default_code = "consistency_violation"


# reason codes
TEST_NOT_PUBLISHED = "TEST_NOT_PUBLISHED"
TEST_NOT_OPEN = "TEST_NOT_OPEN"
TEST_CLOSED = "TEST_CLOSED"
TOURNAMENT_ENDED = "TOURNAMENT_ENDED"
NOT_REGISTERED = "NOT_REGISTERED"
NOT_ASSIGNED_TO_EVENT = "NOT_ASSIGNED_TO_EVENT"
MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"
TIME_EXPIRED = "TIME_EXPIRED"

ATTEMPT_IN_PROGRESS = "ATTEMPT_IN_PROGRESS"
ATTEMPT_NOT_IN_PROGRESS = "ATTEMPT_NOT_IN_PROGRESS"

ATTEMPT_NOT_SUBMITTED = "ATTEMPT_NOT_SUBMITTED"
ANSWER_AUTO_GRADED = "ANSWER_AUTO_GRADED"
ANSWER_NOT_IN_ATTEMPT = "ANSWER_NOT_IN_ATTEMPT"
QUESTION_NOT_IN_TEST = "QUESTION_NOT_IN_TEST"
TOURNAMENT_NOT_ENDED = "TOURNAMENT_NOT_ENDED"
INVALID_POINTS = "INVALID_POINTS"
OPTION_NOT_IN_QUESTION = "OPTION_NOT_IN_QUESTION"
