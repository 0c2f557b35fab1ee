"""
Error taxonomy shared by the moderation pipeline and the AI agent engine.

Every error carries the HTTP status the API layer answers with, so services
raise and the API server only renders.
"""
from typing import List, Optional


class BlogError(Exception):
    """Base class for all domain errors"""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BlogError):
    """Malformed or missing input, correctable by the user"""
    status_code = 400


class NotFoundError(BlogError):
    """Referenced entity does not exist"""
    status_code = 404


class RateLimitedError(BlogError):
    """Too many submissions, retry after the window passes"""
    status_code = 429


class DuplicateSubmissionError(RateLimitedError):
    """Same normalized content already submitted inside the window"""


class SpamRejectedError(BlogError):
    """Content classified as spam by the heuristics"""

    status_code = 400

    def __init__(self, message: str, score: int = 0, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.score = score
        self.reasons = reasons or []


class AuthError(BlogError):
    """Caller is not authenticated"""
    status_code = 401


class ForbiddenError(AuthError):
    """Caller is authenticated but lacks the required role"""
    status_code = 403


class ConfigurationError(BlogError):
    """Operator-side misconfiguration, e.g. missing backend credentials"""
    status_code = 500


class AgentTimeoutError(BlogError):
    """Backend call did not finish inside the execution deadline"""
    status_code = 504


class BackendUnavailableError(BlogError):
    """Backend unreachable or answering with server errors"""
    status_code = 503


class UnknownError(BlogError):
    """Catch-all, logged with full context"""
    status_code = 500
