import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from ticketdesk.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"

request_logger = logging.getLogger("ticketdesk.requests")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    # Configure Uvicorn loggers to use JSON format
    uvicorn_loggers = [
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ]

    for logger_name in uvicorn_loggers:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Disable uvicorn.access logger since we have our own middleware
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys:
    - ts, level, request_id, method, path, status, latency_ms

    For message query routes, also includes:
    - mode: tickets, ticket, search or daily_contacts
    - count: total matching tickets or messages
    - groups: contact groups emitted (daily_contacts only)

    A caller-supplied X-Request-ID is reused, otherwise one is generated.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            elapsed = time.perf_counter() - started

            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=route_template(request),
                    status=response.status_code,
                    latency_seconds=elapsed,
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "query_log_data", {}),
            }

            if response.status_code >= 500:
                request_logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                request_logger.warning("Request completed", extra=log_data)
            else:
                request_logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def route_template(request: Request) -> str:
    """Matched route path (e.g. /tickets/{ticket_id}/messages), else the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def log_query_data(request: Request, mode: str, count: int, groups: Optional[int] = None):
    """
    Attach message query summary to the request state.
    This data will be included in the request log by the middleware.

    Args:
        request: FastAPI request object
        mode: Query mode (tickets, ticket, search, daily_contacts)
        count: Total matching messages
        groups: Number of contact groups emitted, for daily_contacts
    """
    query_data = {"mode": mode, "count": count}

    if groups is not None:
        query_data["groups"] = groups

    request.state.query_log_data = query_data
