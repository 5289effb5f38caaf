"""
CollabHub - Centralized Exception Hierarchy
===========================================

Structured exception types for the access-control and security-audit core,
plus the FastAPI handlers that turn them into HTTP responses.

Exception Categories:
    - ValidationError: Malformed input (unknown permission identifiers, ...)
    - NotFoundError: Unknown role / incident / actor reference
    - ConflictError: Duplicate assignment, sole-owner removal, bad transition
    - AuthenticationError / AuthorizationError: Negative access decisions
    - RateLimitError: Request budget exhausted
"""

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CollabHubError(Exception):
    """
    Base exception for all CollabHub errors.

    Attributes:
        message: Human-readable error description
        code: Error code for programmatic handling
        details: Optional dict with additional context
        status_code: HTTP status used when surfaced through the API
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(CollabHubError):
    """Input failed validation."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class InvalidPermissionError(ValidationError):
    """A role referenced permission identifiers missing from the catalog."""

    default_code = "INVALID_PERMISSION"

    def __init__(self, invalid: Iterable[str]):
        self.invalid = sorted(set(invalid))
        super().__init__(
            f"Invalid permissions: {', '.join(self.invalid)}",
            details={"invalid_permissions": self.invalid},
        )


class NotFoundError(CollabHubError):
    """Referenced entity does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")
        self.resource = resource


class ConflictError(CollabHubError):
    """Operation conflicts with the current state."""

    status_code = 409
    default_code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Incident status change not permitted by the state machine."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition incident from {current} to {target}",
            details={"current": current, "target": target},
        )


class AuthenticationError(CollabHubError):
    """No valid authenticated actor."""

    status_code = 401
    default_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(CollabHubError):
    """Actor is not permitted to perform the action."""

    status_code = 403
    default_code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class RateLimitError(CollabHubError):
    """Too many requests in the current window."""

    status_code = 429
    default_code = "RATE_LIMITED"

    def __init__(self, retry_after: int):
        super().__init__("Too many requests", details={"retry_after": retry_after})
        self.retry_after = retry_after


# ============================================================
# HTTP mapping
# ============================================================


def error_body(error: CollabHubError) -> Dict[str, Any]:
    """Format an error for the JSON response body."""
    body: Dict[str, Any] = {"message": error.message, "code": error.code}
    if error.details:
        body["details"] = error.details
    return {"success": False, "error": body}


async def collabhub_error_handler(request: Request, exc: CollabHubError) -> JSONResponse:
    """Render a CollabHubError as JSON and log it by severity."""
    log_data = {
        "method": request.method,
        "path": request.url.path,
        "status_code": exc.status_code,
        "code": exc.code,
    }
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.message}", extra=log_data)
    else:
        logger.warning(f"Client error: {exc.message}", extra=log_data)

    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Attach the CollabHubError handler to an application."""
    app.add_exception_handler(CollabHubError, collabhub_error_handler)


__all__ = [
    "CollabHubError",
    "ValidationError",
    "InvalidPermissionError",
    "NotFoundError",
    "ConflictError",
    "InvalidTransitionError",
    "AuthenticationError",
    "AuthorizationError",
    "RateLimitError",
    "error_body",
    "register_error_handlers",
]
