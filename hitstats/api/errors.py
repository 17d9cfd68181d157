"""
Exception Handlers

Maps domain exceptions to HTTP responses with a uniform ErrorResponse body.
Registered on every service application.
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hitstats.api.schemas import ErrorResponse
from hitstats.core.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    ServiceUnavailableError,
    StatsValidationError,
)
from hitstats.core.validators import format_timestamp, utcnow

logger = logging.getLogger(__name__)


def error_response(status_code: int, reason: str, message: str) -> JSONResponse:
    body = ErrorResponse(
        status=HTTPStatus(status_code).name,
        reason=reason,
        message=message,
        timestamp=format_timestamp(utcnow()),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _first_validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))
    return "Validation failed"


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _first_validation_message(exc)
    logger.warning(f"Validation error on {request.url.path}: {message}")
    return error_response(status.HTTP_400_BAD_REQUEST, "Incorrectly made request.", message)


async def handle_stats_validation(request: Request, exc: StatsValidationError) -> JSONResponse:
    logger.warning(f"Validation error on {request.url.path}: {exc.message}")
    return error_response(status.HTTP_400_BAD_REQUEST, "Incorrectly made request.", exc.message)


async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, "The required object was not found.", str(exc))


async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return error_response(
        status.HTTP_409_CONFLICT,
        "For the requested operation the conditions are not met.",
        str(exc),
    )


async def handle_service_unavailable(request: Request, exc: ServiceUnavailableError) -> JSONResponse:
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Dependent service is unavailable.", str(exc))


async def handle_database_error(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error(f"Database error on {request.url.path}: {exc}", exc_info=exc.original_error)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error.", str(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(StatsValidationError, handle_stats_validation)
    app.add_exception_handler(NotFoundError, handle_not_found)
    app.add_exception_handler(ConflictError, handle_conflict)
    app.add_exception_handler(ServiceUnavailableError, handle_service_unavailable)
    app.add_exception_handler(DatabaseError, handle_database_error)
