"""
VidTube — core/errors.py
─────────────────────────────────────────────────────────────────
Error taxonomy + response envelopes.

Every route raises one of the ApiError subclasses below and the
handlers installed by install_error_handlers() turn it into:

    {"statusCode": 404, "message": "...", "success": false, "errors": []}

Error responses re-send cookies from a session rotated earlier in the
request. Successful routes return ApiResponse(...).to_dict() and set the
status on the route decorator, so cookies written on the injected
Response (login, session refresh) survive:

    {"statusCode": 200, "data": {...}, "message": "...", "success": true}
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vidtube.core.cookies import replay_rotation

logger = logging.getLogger("vidtube.errors")


# ─────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────
class ApiError(Exception):
    """Base API exception. Carries the HTTP status it maps to."""

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[list] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(ApiError):
    """Bad or missing input."""
    status_code = 400
    default_message = "Invalid request"

class AuthenticationError(ApiError):
    """Bad credentials, or an invalid / expired token."""
    status_code = 401
    default_message = "unauthorized request"

class TokenExpiredError(AuthenticationError):
    """Token signature is fine but exp has passed."""
    default_message = "token expired"

class TokenInvalidError(AuthenticationError):
    """Malformed token, bad signature, or wrong token type."""
    default_message = "token invalid"

class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"

class ConflictError(ApiError):
    """Duplicate username / email."""
    status_code = 409
    default_message = "Already exists"

class DependencyFailure(ApiError):
    """Media store or database call failed."""
    status_code = 500
    default_message = "Upstream dependency failed"

class TokenIssuanceError(ApiError):
    status_code = 500
    default_message = "failed to generate access and refresh token. Please try again"


# ─────────────────────────────────────────────
# Envelopes
# ─────────────────────────────────────────────
class ApiResponse:
    """Success envelope. success is derived from the status code."""

    def __init__(self, status_code: int, data: Any, message: str = "Success"):
        self.status_code = status_code
        self.data = data
        self.message = message
        self.success = status_code < 400

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "data":       self.data,
            "message":    self.message,
            "success":    self.success,
        }


def error_body(status_code: int, message: str, errors: Optional[list] = None) -> dict:
    return {
        "statusCode": status_code,
        "message":    message,
        "success":    False,
        "errors":     errors or [],
    }


# ─────────────────────────────────────────────
# Handlers
# ─────────────────────────────────────────────
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
    response = JSONResponse(
        status_code = exc.status_code,
        content     = error_body(exc.status_code, exc.message, exc.errors),
    )
    return replay_rotation(request, response)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Invalid request"
    response = JSONResponse(status_code=400, content=error_body(400, message, errors))
    return replay_rotation(request, response)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    response = JSONResponse(status_code=500, content=error_body(500, "Internal server error"))
    return replay_rotation(request, response)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
