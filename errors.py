"""Application error types and the handlers that render them as JSON envelopes.

Every failure a handler can report is one of the ``AppError`` subclasses
below. Each carries its HTTP status so the mapping lives in one place.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.error
        self.details = details
        super().__init__(self.message)


class InvalidInputError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid data"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Resource not found"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Authentication error"


class InvalidTokenError(AuthenticationError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Invalid or expired token"


class TokenMalformedError(InvalidTokenError):
    pass


class TokenExpiredError(InvalidTokenError):
    pass


class TokenNotYetValidError(InvalidTokenError):
    pass


class TokenVerificationError(InvalidTokenError):
    pass


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Access denied"


class UpstreamError(AppError):
    error = "Server error"
    public_message = "Database error. Please try again later."


def error_body(error: str, message: str, **extra: Any) -> Dict[str, Any]:
    body = {"success": False, "error": error, "message": message}
    body.update(extra)
    return body


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request body"


def register_exception_handlers(app: FastAPI, debug: bool) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        message = exc.message
        if isinstance(exc, UpstreamError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            if not debug:
                message = exc.public_message
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error, message, **exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(InvalidInputError.error, _format_validation_errors(exc)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("Request failed", str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = str(exc) if debug else "Something went wrong on the server"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(AppError.error, message),
        )
