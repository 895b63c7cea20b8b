"""Uniform error envelope installed on the FastAPI application."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.errors import AuthError, ErrorKind

logger = logging.getLogger(__name__)

HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.DELIVERY_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    try:
        status_type = HTTPStatus(status_code).name
    except ValueError:
        status_type = "UNKNOWN_ERROR"
    body = {
        "statusCode": status_code,
        "statusType": status_type,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
    }
    return JSONResponse(status_code=status_code, content=body)


async def _handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
    status_code = HTTP_STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(request, status_code, exc.message)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(request, exc.status_code, str(exc.detail))


def validation_message(problem: Mapping[str, Any]) -> str:
    """Client message for one pydantic error: validator text as raised, otherwise prefixed with the field."""
    error = (problem.get("ctx") or {}).get("error")
    if problem.get("type") == "value_error" and error is not None:
        return str(error)
    message = problem.get("msg", "Invalid request")
    location = problem.get("loc") or ()
    if location:
        return f"{location[-1]}: {message}"
    return message


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = exc.errors()
    message = validation_message(problems[0]) if problems else "Invalid request"
    return error_response(request, status.HTTP_400_BAD_REQUEST, message)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, _handle_auth_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected)
