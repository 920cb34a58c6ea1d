"""
Typed authentication/authorization errors and their HTTP mapping.

Services raise these; the route layer maps them to a JSON error body via
``auth_error_handler``. Messages are fixed strings: they never reveal whether
an email is registered or which gyms exist.
"""

from __future__ import annotations

from typing import Optional

from starlette.requests import Request
from starlette.responses import JSONResponse


class AuthError(Exception):
    """Base for every error the access core surfaces to callers."""

    code = "AUTH_ERROR"
    status_code = 401
    message = "Authentication failed"
    selection_required = False
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status_code,
                "selection_required": self.selection_required,
            }
        }


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    message = "Invalid email or password"


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    status_code = 423
    message = "Account temporarily locked"


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"
    status_code = 401
    message = "Authentication required"


class SessionNotFound(Unauthenticated):
    code = "SESSION_NOT_FOUND"
    message = "Invalid or expired session"


class OrganizationSelectionRequired(AuthError):
    code = "ORGANIZATION_SELECTION_REQUIRED"
    status_code = 403
    message = "Select a gym to continue"
    selection_required = True


class ForbiddenOrganization(AuthError):
    code = "FORBIDDEN_ORGANIZATION"
    status_code = 403
    message = "Access to this gym is not allowed"


class InvalidResetToken(AuthError):
    """Unknown, used or expired reset link. Same answer for all three."""

    code = "INVALID_RESET_TOKEN"
    status_code = 400
    message = "Invalid or expired reset link"


class TemporaryUnavailable(AuthError):
    code = "TEMPORARY_UNAVAILABLE"
    status_code = 503
    message = "Service temporarily unavailable, retry shortly"
    retryable = True


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an ``AuthError`` in the API's standard error envelope."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
