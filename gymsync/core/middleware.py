"""
HTTP middleware for the JSON API: response hardening headers and
double-submit CSRF checks for cookie-authenticated browsers.
"""

from __future__ import annotations

import secrets

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gymsync.core.config import get_settings

settings = get_settings()

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

# Routes a browser calls before it holds a live session; a stale cookie must not block them.
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/auth/password-reset/request",
    "/auth/password-reset/confirm",
}

# The API only ever returns JSON: nothing may render, frame or cache it.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}

HSTS_HEADER = ("Strict-Transport-Security", "max-age=63072000; includeSubDomains")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach ``SECURITY_HEADERS`` (plus HSTS outside debug) unless a route set its own."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if not settings.debug:
            response.headers.setdefault(*HSTS_HEADER)
        return response


def csrf_rejection() -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": {
                "code": "CSRF_VALIDATION_FAILED",
                "message": "Missing or mismatched CSRF token",
                "status": 403,
                "selection_required": False,
            }
        },
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    """Require ``X-CSRF-Token`` to equal the CSRF cookie on state-changing cookie requests.

    Bearer-token clients and requests carrying no session cookie are not
    exposed to CSRF and pass through.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if (
            request.method in SAFE_METHODS
            or request.url.path in CSRF_EXEMPT_PATHS
            or request.headers.get("Authorization")
            or settings.session_cookie_name not in request.cookies
        ):
            return await call_next(request)

        cookie_token = request.cookies.get(settings.csrf_cookie_name, "")
        header_token = request.headers.get("X-CSRF-Token", "")
        if not cookie_token or not secrets.compare_digest(cookie_token.encode(), header_token.encode()):
            return csrf_rejection()
        return await call_next(request)
