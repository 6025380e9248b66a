"""
Application errors and their FastAPI handlers.

Every error carries a stable machine-readable code and an HTTP status.
Responses are rendered as {"error": code}.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ticketdesk.metrics import record_app_error

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error with a stable code and HTTP status."""

    status_code = 400

    def __init__(self, code: str, status_code: int = None):
        super().__init__(code)
        self.code = code
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    """Requested entity does not exist."""

    status_code = 404


class ValidationError(AppError):
    """Required filter missing or malformed. Raised before any store access."""

    status_code = 400


class AuthenticationError(AppError):
    """Missing or invalid API token."""

    status_code = 401

    def __init__(self, code: str = "ERR_SESSION_EXPIRED"):
        super().__init__(code)


class StoreFailure(AppError):
    """An underlying store call failed. Not retried here."""

    status_code = 500

    def __init__(self, code: str = "ERR_STORE_FAILURE"):
        super().__init__(code)


class ConfigurationError(AppError):
    """Server settings are unusable, e.g. an unknown TIMEZONE."""

    status_code = 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as {"error": code}."""
    log_data = {
        "code": exc.code,
        "method": request.method,
        "path": request.url.path,
        "status": exc.status_code,
    }
    if exc.status_code >= 500:
        logger.error("Request failed", extra=log_data, exc_info=exc.__cause__)
    else:
        logger.warning("Request rejected", extra=log_data)

    record_app_error(exc.code)

    return JSONResponse(status_code=exc.status_code, content={"error": exc.code})


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI's request validation failures as {"error": "ERR_VALIDATION"}."""
    logger.warning(
        "Request rejected",
        extra={
            "code": "ERR_VALIDATION",
            "method": request.method,
            "path": request.url.path,
            "status": 422,
            "errors": [".".join(str(part) for part in err["loc"]) for err in exc.errors()],
        },
    )
    record_app_error("ERR_VALIDATION")

    return JSONResponse(status_code=422, content={"error": "ERR_VALIDATION"})


def register_error_handlers(app):
    """Register application error handlers with the FastAPI app."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    return app

