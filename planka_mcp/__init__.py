"""Planka MCP Server Package.

MCP server exposing Planka projects, boards, lists and cards as tools.
"""

__version__ = "0.1.0"

from planka_mcp.exceptions import (  # noqa: E402
    AuthenticationError,
    BackendError,
    BackendValidationError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    PlankaError,
    RequestTimeoutError,
    UnauthorizedError,
    ValidationError,
)
from planka_mcp.planka_client import ApiResponse, PlankaClient  # noqa: E402
from planka_mcp.sessions import SessionRegistry  # noqa: E402

__all__ = [
    "ApiResponse",
    "AuthenticationError",
    "BackendError",
    "BackendValidationError",
    "ConfigurationError",
    "NetworkError",
    "NotFoundError",
    "PlankaClient",
    "PlankaError",
    "RequestTimeoutError",
    "SessionRegistry",
    "UnauthorizedError",
    "ValidationError",
]
