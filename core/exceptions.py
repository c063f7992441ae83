"""Custom exception classes for the SoundTrace core.

Collaborator failures are classified once, at the HTTP boundary, into one of
AuthError, ValidationError, UpstreamError or TransportError. Callers branch on
the type, never on the message text.
"""

from enum import Enum


class SoundTraceError(Exception):
    """Base exception for all SoundTrace errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthError(SoundTraceError):
    """Raised when the session is missing, invalid or expired."""

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.status_code = status_code


class ValidationError(SoundTraceError):
    """Raised for local, per-item input problems (file type, size, URL)."""

    pass


class DecodeError(ValidationError):
    """Raised when audio bytes cannot be decoded."""

    pass


class UpstreamErrorCode(str, Enum):
    """Domain failure categories reported by collaborators."""

    RATE_LIMITED = "rate_limited"
    NO_RESULT = "no_result"
    UPSTREAM_ERROR = "upstream_error"
    CREDITS_EXHAUSTED = "credits_exhausted"


class UpstreamError(SoundTraceError):
    """Raised when a collaborator answers with a domain failure."""

    def __init__(
        self,
        message: str,
        code: UpstreamErrorCode = UpstreamErrorCode.UPSTREAM_ERROR,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.code = code
        self.status_code = status_code


class TransportError(SoundTraceError):
    """Raised when a collaborator could not be reached or timed out."""

    def __init__(self, message: str, timeout: bool = False, details: dict | None = None):
        super().__init__(message, details)
        self.timeout = timeout


class JobStateError(SoundTraceError):
    """Raised when a job control operation is not offered in the current status."""

    pass


class ServiceInitializationError(SoundTraceError):
    """Raised when a service fails to initialize."""

    pass


class ConfigurationError(SoundTraceError):
    """Raised when there's a configuration error."""

    pass
