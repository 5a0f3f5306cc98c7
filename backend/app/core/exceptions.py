"""
Application error taxonomy.

Every error is an HTTPException subclass, so services can raise them directly
and FastAPI renders them as ``{"detail": "<message>"}`` with the right status.
Business-rule violations (duplicate email, last-admin protection, ...) are
surfaced as 400s.
"""

import logging
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "An error occurred"

    def __init__(self, detail: str | None = None, headers: dict | None = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class NoItems(ValidationError):
    default_detail = "No IDs provided"


class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authorized"

    def __init__(self, detail: str | None = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class InvalidCredentials(Unauthenticated):
    default_detail = "Invalid credentials"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Access denied"


class AccountDeactivated(Forbidden):
    default_detail = "Account is deactivated. Please contact an administrator."


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request conflicts with current state"


class DuplicateEmail(Conflict):
    default_detail = "User already exists"


class AlreadyAdmin(Conflict):
    default_detail = "User is already an admin"


class NotAnAdmin(Conflict):
    default_detail = "User is not an admin"


class SelfDemotion(Conflict):
    default_detail = "You cannot demote yourself"


class LastAdminProtected(Conflict):
    default_detail = "Cannot demote the last admin. At least one admin must remain in the system."


class InvalidOrExpiredCode(Conflict):
    default_detail = "Invalid or expired OTP"


class PayloadTooLarge(AppError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_detail = "File too large"


def register_exception_handlers(app: FastAPI) -> FastAPI:

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app
