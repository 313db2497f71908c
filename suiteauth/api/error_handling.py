from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from suiteauth.api.schemas import ErrorBody, ErrorResponse
from suiteauth.logging import get_correlation_id, get_logger
from suiteauth.service.errors import ServiceError
from suiteauth.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "not_found",
    409: "conflict",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    if status_code in _STATUS_TO_CODE:
        return _STATUS_TO_CODE[status_code]
    return "validation_error" if 400 <= status_code < 500 else "server_error"


def error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Build the JSON error body shared by every failure path."""
    error_code = code or _error_code_for_status(status_code)
    body = ErrorResponse(
        error=ErrorBody(code=error_code, message=message, details=details or None),
        request_id=get_correlation_id(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def response_for_exception(request: Request, exc: Exception) -> JSONResponse:
    """Map any exception onto an error response; stack traces never leave the process."""
    if isinstance(exc, ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        if exc.status_code >= 500:
            return error_response(exc.status_code, "internal server error", code=exc.error_code)
        return error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    if isinstance(exc, ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return error_response(409, exc.message, exc.detail, code="conflict")

    if isinstance(exc, HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error", path=request.url.path, method=request.method, status_code=exc.status_code
            )
        return error_response(exc.status_code, message)

    logger.exception(
        "unhandled_exception",
        exc_info=exc,
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )
    return error_response(500, "internal server error", code="server_error")


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers so errors raised outside the dispatcher share one body shape."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return response_for_exception(request, exc)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        return response_for_exception(request, exc)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        return response_for_exception(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()
        ]
        logger.warning("request_validation_error", path=request.url.path, errors=errors)
        return error_response(400, "invalid request", {"errors": errors})

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        return response_for_exception(request, exc)
