"""
API errors and the handlers that turn them into the JSON error envelope:

    {"error": {"code": "NOT_FOUND", "message": "Post not found"}}
"""

import logging
import traceback
from typing import Any, Dict, Optional

from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from sanitize import sanitize_for_log

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, code: str = "INTERNAL_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details

    @classmethod
    def bad_request(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return cls(400, message, "BAD_REQUEST", details)

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized") -> "ApiError":
        return cls(401, message, "UNAUTHORIZED")

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> "ApiError":
        return cls(403, message, "FORBIDDEN")

    @classmethod
    def not_found(cls, resource: str = "Resource") -> "ApiError":
        return cls(404, f"{resource} not found", "NOT_FOUND")

    @classmethod
    def conflict(cls, message: str) -> "ApiError":
        return cls(409, message, "CONFLICT")

    @classmethod
    def internal(cls, message: str = "Internal server error") -> "ApiError":
        return cls(500, message, "INTERNAL_ERROR")


def error_response(request: Request, exc: Exception, status_code: int, code: str, message: str,
                   details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.is_development and status_code >= 500:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content={"error": body})


async def api_error_handler(request: Request, exc: ApiError):
    logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return error_response(request, exc, exc.status_code, exc.code, exc.message, exc.details)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("%s %s -> validation failed", request.method, request.url.path)
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return error_response(request, exc, 400, "BAD_REQUEST", "Validation failed", {"errors": errors})


async def document_validation_handler(request: Request, exc: ValidationError):
    logger.warning("%s %s -> document validation failed: %s", request.method, request.url.path, exc)
    return error_response(request, exc, 400, "VALIDATION_ERROR", str(exc))


async def invalid_id_handler(request: Request, exc: InvalidId):
    return error_response(request, exc, 400, "INVALID_ID", "Invalid resource ID format")


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    # Lost a check-then-insert race on a unique index
    logger.warning("%s %s -> duplicate key: %s", request.method, request.url.path, exc)
    return error_response(request, exc, 409, "CONFLICT", "Resource already exists")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return error_response(request, exc, 404, "NOT_FOUND",
                              f"Route {request.method} {request.url.path} not found")
    return error_response(request, exc, exc.status_code, "HTTP_ERROR", str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s headers=%s", request.method, request.url.path,
                 sanitize_for_log(dict(request.headers)), exc_info=exc)
    return error_response(request, exc, 500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, document_validation_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
