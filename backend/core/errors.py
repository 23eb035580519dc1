# backend/core/errors.py
"""
Error taxonomy shared by services and routers.

Services raise these; `main.py` registers one handler that turns any
AppError into `{"error": message}` with the class's status code.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AppError):
    status_code = 401
    default_message = "Unauthorized"


class InsufficientCredits(AppError):
    status_code = 403
    default_message = "No interview credits remaining. Please purchase more credits."


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class ProfileNotFound(NotFound):
    default_message = "Profile not found"


class SessionNotFound(NotFound):
    # ownership failures use this too, so a foreign session looks absent
    default_message = "Session not found or unauthorized"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NoTranscript(ValidationError):
    default_message = "No transcript available for this session"


class EvaluationFailed(AppError):
    status_code = 500
    default_message = "Failed to evaluate answers"


class UpstreamCallFailure(EvaluationFailed):
    default_message = "Evaluation service unavailable"


class PersistenceError(AppError):
    status_code = 500
    default_message = "Storage read/write failed"


class ProviderCallFailed(AppError):
    status_code = 502
    default_message = "Failed to create the interview call"
