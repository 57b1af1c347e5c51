"""
Global exception handlers for the API.

Every error leaves the service as ``{"success": false, "error": {...}}``.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import get_settings
from core.exceptions import AppException

logger = logging.getLogger(__name__)

# Error codes for HTTPExceptions raised by routes and dependencies
HTTP_ERROR_CODES = {
    401: "authentication_failed",
    404: "not_found",
    405: "method_not_allowed",
    503: "service_unavailable",
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": " -> ".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI app.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Lifecycle errors: not found, rejected transitions, storage faults."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"{exc.error_code} on {request.url.path}: {exc.message} {exc.details or ''}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return error_response(exc.status_code, code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors."""
        errors = _field_errors(exc)
        logger.warning(f"Validation error on {request.url.path}: {errors}")
        return error_response(
            422, "validation_error", "Request validation failed", {"errors": errors}
        )

    @app.exception_handler(PydanticValidationError)
    async def pydantic_exception_handler(
        request: Request,
        exc: PydanticValidationError
    ) -> JSONResponse:
        # Raised when a stored item no longer fits a response model
        logger.error(f"Response validation failed on {request.url.path}: {exc}")
        return error_response(
            422,
            "validation_error",
            "Data validation failed",
            {"errors": exc.errors(include_url=False, include_context=False)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        """Invalid values rejected by the record store (e.g. None for a required field)."""
        logger.warning(f"Rejected value on {request.url.path}: {exc}")
        return error_response(422, "validation_error", str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.url.path}: {exc}")

        if get_settings().is_production:
            return error_response(500, "internal_error", "An unexpected error occurred")
        return error_response(
            500, "internal_error", str(exc), {"type": type(exc).__name__}
        )
