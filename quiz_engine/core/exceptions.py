"""
Quiz Engine Errors
==================

Domain exceptions raised by the service layer. Each carries the HTTP status and a
stable machine-readable code; ``main.py`` renders them through a single FastAPI
exception handler so routes never translate errors by hand.
"""

from typing import Any, Dict, Optional


class QuizEngineError(Exception):
    """Base class for every error reported to API callers."""
    status_code = 400
    code = "quiz_engine_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "error": self.code, "detail": self.message}
        payload.update(self.details)
        return payload


class ValidationError(QuizEngineError):
    """Bad quiz or answer shape. Reported synchronously, never persisted."""
    code = "validation_error"


class StructureError(ValidationError):
    """A question definition is structurally invalid."""
    code = "structure_error"

    def __init__(self, message: str, question_index: Optional[int] = None):
        details = {"question_index": question_index} if question_index is not None else None
        super().__init__(message, details)
        self.question_index = question_index


class PublishError(QuizEngineError):
    code = "publish_error"


class ImmutableStructureError(QuizEngineError):
    """Quiz structure is frozen because students have attempted it."""
    status_code = 409
    code = "immutable_structure"


class AuthzError(QuizEngineError):
    status_code = 403
    code = "forbidden"


class NotFoundError(QuizEngineError):
    status_code = 404
    code = "not_found"


class InactiveQuizError(QuizEngineError):
    code = "quiz_inactive"


class PasswordError(QuizEngineError):
    status_code = 401
    code = "incorrect_password"


class AttemptLimitError(QuizEngineError):
    status_code = 409
    code = "attempt_limit_reached"


class ExpiredAttemptError(QuizEngineError):
    """The attempt's time window elapsed; it has been auto-submitted."""
    status_code = 410
    code = "attempt_expired"


class AlreadySubmittedError(QuizEngineError):
    status_code = 409
    code = "already_submitted"


class ConcurrentUpdateError(QuizEngineError):
    """The optimistic guard lost twice in a row."""
    status_code = 409
    code = "concurrent_update"
