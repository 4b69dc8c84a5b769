"""
Error rendering

Every error body has the same shape: {"detail", "code", "details"}.
Domain errors keep their own status codes and messages. Anything unexpected
becomes a 500 whose body reveals nothing about the database or the code;
the full traceback only goes to the log.
"""
import logging
import uuid
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.config import settings
from storefront.core.exceptions import StorefrontError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An internal error occurred. Please try again later."
MAX_MESSAGE_LENGTH = 200

# Fragments that mark a message as leaking internals
SENSITIVE_PATTERNS = (
    "password",
    "secret",
    "token",
    "sqlalchemy",
    "asyncpg",
    "sqlite",
    "postgresql",
    "traceback",
    'file "',
)


def is_sensitive_error(message: str) -> bool:
    lowered = message.lower()
    return any(fragment in lowered for fragment in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Message safe to show a client; verbatim in DEBUG."""
    message = str(error)
    if settings.DEBUG:
        return message
    if is_sensitive_error(message):
        return GENERIC_MESSAGE
    if len(message) > MAX_MESSAGE_LENGTH:
        return f"{message[:MAX_MESSAGE_LENGTH]}..."
    return message


def error_response(
    status_code: int,
    detail: str,
    code: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": code, "details": details or {}},
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc!r} on {request.method} {request.url.path}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, sanitize_error_message(exc.message), exc.code, exc.details)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Turn unhandled exceptions into a logged, opaque 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.exception(
                f"Unhandled {type(e).__name__} [{error_id}] on {request.method} {request.url.path}"
            )
            detail = f"{type(e).__name__}: {e}" if settings.DEBUG else GENERIC_MESSAGE
            return error_response(500, detail, "INTERNAL_ERROR", {"error_id": error_id})
