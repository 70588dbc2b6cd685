"""Domain errors and the FastAPI handlers that render them.

Every error response has the shape ``{"error": <message>, "code": <category>}``
so clients can branch on ``code`` while showing ``error``.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class InvalidInput(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class Forbidden(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class DuplicateReaction(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "duplicate_reaction"


class AlreadyExists(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "already_exists"


class InvalidState(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_state"


_HTTP_CODES = {
    400: "invalid_input",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
}


async def messaging_error_handler(request: Request, exc: MessagingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": _HTTP_CODES.get(exc.status_code, "error")},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed request fields are reported as 400, not 422."""
    errors = exc.errors()
    logger.info(f"Validation error on {request.url.path}: {errors}")
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"Invalid {field}: {first.get('msg', 'invalid value')}", "code": InvalidInput.code},
    )


async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Storage failure on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "code": MessagingError.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MessagingError, messaging_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, storage_exception_handler)
