"""
Application error hierarchy.

Services raise these; the API layer renders them as ``ErrorResponse`` bodies
(``{"error": code, "message": detail}``) with the status code carried by the
exception class. Add new failure kinds here instead of raising bare
HTTPExceptions from service code.
"""
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Something went wrong"):
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class InvalidInputError(AppError):
    """User input rejected before any database or network call."""

    status_code = 400
    code = "invalid_input"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class BusyError(AppError):
    status_code = 429
    code = "busy"


class BackendUnavailableError(AppError):
    """Database or hosted function could not be reached."""

    status_code = 503
    code = "backend_unavailable"


class ConversationLoadError(AppError):
    status_code = 500
    code = "conversation_load_failed"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    return await app_error_handler(request, BackendUnavailableError("The database is unavailable, please try again"))
