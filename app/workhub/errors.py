from __future__ import annotations

from typing import Any

from flask import Flask, g, jsonify, request
from pymongo.errors import DuplicateKeyError
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException


class ErrorType:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    BAD_REQUEST = "BAD_REQUEST"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


_HTTP_ERROR_TYPES = {
    400: ErrorType.BAD_REQUEST,
    401: ErrorType.UNAUTHORIZED,
    403: ErrorType.FORBIDDEN,
    404: ErrorType.NOT_FOUND,
    409: ErrorType.CONFLICT,
    422: ErrorType.VALIDATION_ERROR,
    429: ErrorType.TOO_MANY_REQUESTS,
}


class AppError(Exception):
    status_code = 500
    error_type = ErrorType.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    status_code = 422
    error_type = ErrorType.VALIDATION_ERROR


class BadRequestError(AppError):
    status_code = 400
    error_type = ErrorType.BAD_REQUEST


class UnauthorizedError(AppError):
    status_code = 401
    error_type = ErrorType.UNAUTHORIZED


class ForbiddenError(AppError):
    status_code = 403
    error_type = ErrorType.FORBIDDEN


class NotFoundError(AppError):
    status_code = 404
    error_type = ErrorType.NOT_FOUND


class ConflictError(AppError):
    status_code = 409
    error_type = ErrorType.CONFLICT


class TooManyRequestsError(AppError):
    status_code = 429
    error_type = ErrorType.TOO_MANY_REQUESTS


def raise_if_errors(errors: list[str], message: str = "Validation failed") -> None:
    """Services collect validation messages as a list; this turns them into a 422."""
    if errors:
        raise ValidationError(errors[0] if len(errors) == 1 else message, details=errors)


def error_response(status: int, message: str, error_type: str, details: Any = None):
    body = {
        "status": status,
        "success": False,
        "message": message,
        "type": error_type,
        "details": details,
    }
    return jsonify(body), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _app_error(e: AppError):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if e.status_code >= 500:
            app.logger.exception("Unhandled application error (request_id=%s)", rid)
        elif e.status_code == 403 and getattr(g, "missing_permission", None):
            app.logger.warning(
                "Forbidden: %s %s missing_permission=%s request_id=%s",
                request.method,
                request.path,
                g.missing_permission,
                rid,
            )
        else:
            app.logger.warning(
                "%s %s -> %s %s: %s (request_id=%s)",
                request.method,
                request.path,
                e.status_code,
                e.error_type,
                e.message,
                rid,
            )
        return error_response(e.status_code, e.message, e.error_type, e.details)

    @app.errorhandler(DuplicateKeyError)
    def _duplicate_key(e: DuplicateKeyError):  # type: ignore[no-redef]
        key_value = (e.details or {}).get("keyValue")
        app.logger.warning("Duplicate key on %s (request_id=%s): %s", request.path, getattr(g, "request_id", None), key_value)
        return error_response(409, "Duplicate value violates a unique constraint", ErrorType.CONFLICT, key_value)

    @app.errorhandler(IntegrityError)
    def _integrity(e: IntegrityError):  # type: ignore[no-redef]
        app.logger.warning("Integrity error on %s (request_id=%s): %s", request.path, getattr(g, "request_id", None), e.orig)
        return error_response(409, "Record conflicts with existing data", ErrorType.CONFLICT)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        status = e.code or 500
        if status == 413:
            return error_response(413, "Request payload too large", ErrorType.BAD_REQUEST)
        if status == 404:
            message = f"Route not found: {request.method} {request.path}"
        else:
            message = e.description or e.name
        return error_response(status, message, _HTTP_ERROR_TYPES.get(status, ErrorType.BAD_REQUEST))

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs; never leak internals to the client.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response(500, "Internal server error", ErrorType.INTERNAL_SERVER_ERROR)
