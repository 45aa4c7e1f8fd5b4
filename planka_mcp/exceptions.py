"""Exception hierarchy shared by the Planka client, tools and HTTP surface."""

from typing import Any


class PlankaError(Exception):
    """Base class for every error raised by planka_mcp."""


class ConfigurationError(PlankaError):
    """Required settings are missing or malformed."""


class AuthenticationError(PlankaError):
    """The backend rejected our credentials or token."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(PlankaError):
    """The backend could not be reached."""


class RequestTimeoutError(NetworkError):
    """The backend did not answer within the configured timeout."""


class BackendError(PlankaError):
    """Non-2xx response from the backend."""

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(BackendError):
    pass


class ValidationError(PlankaError):
    """Input was rejected before or by the backend."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UnauthorizedError(BackendError, AuthenticationError):
    """The backend answered 401 even after a fresh login."""


class BackendValidationError(BackendError, ValidationError):
    """The backend rejected the request with 400 or 422."""


class ToolError(PlankaError):
    """A tool call could not be dispatched (unknown name or bad arguments)."""
