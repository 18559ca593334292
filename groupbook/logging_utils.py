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

from groupbook.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with ISO-8601 UTC timestamps and the current request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname

        if "request_id" not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record["request_id"] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))
    logger.addHandler(json_handler)

    # Route uvicorn through the same JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware already logs every request
    logging.getLogger("uvicorn.access").disabled = True

    return logger


REQUEST_ID_HEADER = "X-Request-ID"

# /metrics scrapes would otherwise dominate the request counters
UNMETERED_PATHS = {"/metrics"}

request_logger = logging.getLogger("groupbook.requests")


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured log line and one metrics sample per request.

    A caller-supplied X-Request-ID is reused so ids can be followed across
    services; otherwise a uuid4 is assigned. Either way it is echoed back on
    the response and attached to every log record emitted while handling it.
    Fields added with log_request_data() are merged into the line.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        ctx_token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(ctx_token)

        elapsed = time.perf_counter() - started
        response.headers[REQUEST_ID_HEADER] = request_id
        self._observe(request, response.status_code, elapsed)
        return response

    @staticmethod
    def _observe(request: Request, status_code: int, elapsed: float) -> None:
        path = request.url.path
        if path not in UNMETERED_PATHS:
            record_http_request(request.method, path, status_code, elapsed)

        fields = {
            "request_id": request.state.request_id,
            "method": request.method,
            "path": path,
            "status": status_code,
            "latency_ms": round(elapsed * 1000, 2),
            **getattr(request.state, "log_data", {}),
        }
        request_logger.log(level_for_status(status_code), "Request completed", extra=fields)


def log_request_data(request: Request, **fields) -> None:
    """
    Attach handler-specific fields to the request log line.
    None values are dropped.
    """
    log_data = getattr(request.state, "log_data", {})
    log_data.update({k: v for k, v in fields.items() if v is not None})
    request.state.log_data = log_data
