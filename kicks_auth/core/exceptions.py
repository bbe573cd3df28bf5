"""
Error taxonomy and global exception handlers.

Every failure leaves the API in one envelope::

    {"error": "<client-safe message>", "code": "<machine code>", "success": false}

Stack traces and database details are logged, never returned.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request"


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials"


class Unauthorized(AppError):
    """Bearer token missing, malformed, badly signed or expired.

    Subclasses exist for logging and tests; all of them render the same
    body so a client cannot tell which check failed.
    """

    status_code = 401
    code = "unauthorized"
    message = "Invalid or missing credentials"

    def __init__(self, reason: str | None = None, **extra: Any) -> None:
        super().__init__(None, **extra)
        self.reason = reason


class TokenMissing(Unauthorized):
    pass


class TokenInvalid(Unauthorized):
    pass


class TokenExpired(Unauthorized):
    pass


class NoSession(AppError):
    status_code = 401
    code = "no_session"
    message = "No active session found"


class EmailNotVerified(AppError):
    status_code = 403
    code = "email_not_verified"
    message = (
        "Please verify your email address before signing in. "
        "Check your inbox for the verification link."
    )

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        extra.setdefault("requires_verification", True)
        super().__init__(message, **extra)


class AccountInactive(AppError):
    status_code = 403
    code = "account_inactive"
    message = "User account is inactive"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient privileges"


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class UserNotFound(NotFound):
    message = "User not found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists"


# ── Ephemeral (verification / reset) token failures ────────────────
class EphemeralTokenError(AppError):
    status_code = 400
    code = "invalid_token"
    message = "Invalid or expired token"


class TokenNotFound(EphemeralTokenError):
    code = "not_found"
    message = "Invalid or expired token"


class EphemeralTokenExpired(EphemeralTokenError):
    code = "expired"
    message = "Token has expired"


class TokenAlreadyUsed(EphemeralTokenError):
    code = "already_used"
    message = "Token has already been used"


# ── Handlers ────────────────────────────────────────────────────────
def _envelope(status_code: int, message: str, code: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "success": False, **extra},
    )


async def _app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Application error: %s", exc, exc_info=True)
    return _envelope(exc.status_code, exc.message, exc.code, **exc.extra)


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    response = _envelope(exc.status_code, str(exc.detail), "http_error")
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _envelope(400, message, ValidationFailed.code)


async def _rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _envelope(429, f"Too many requests: {exc.detail}", "rate_limited")


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return _envelope(409, "Database constraint violation", Conflict.code)


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return _envelope(500, "Internal database error", AppError.code)


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _envelope(500, "Internal server error", AppError.code)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
