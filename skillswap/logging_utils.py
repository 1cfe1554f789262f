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

from skillswap.metrics import record_http_request


# Context variables carrying the current request / socket connection
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
connection_id_ctx: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter adding ISO-8601 timestamps and request/connection ids."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id

        if 'connection_id' not in log_record:
            conn_id = connection_id_ctx.get()
            if conn_id:
                log_record['connection_id'] = conn_id


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

    Logged keys: ts, level, request_id, method, path, status, latency_ms.

    For /webhook/notifications requests, also includes:
    - notification_id: id of the created notification (when present)
    - result: created, invalid_signature, validation_error, persistence_error

    Socket traffic is not HTTP and is logged by the socket handler with
    connection_id instead.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            latency_seconds = time.time() - start_time
            latency_ms = round(latency_seconds * 1000, 2)

            # Exclude /metrics to avoid self-instrumentation noise
            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": latency_ms,
            }

            if hasattr(request.state, "producer_log_data"):
                log_data.update(request.state.producer_log_data)

            logger = logging.getLogger("skillswap.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_producer_data(request: Request, notification_id: Optional[int] = None, result: Optional[str] = None):
    """
    Attach producer-webhook fields to the request state.
    The middleware includes them in the request log line.

    Args:
        request: FastAPI request object
        notification_id: Id of the notification that was created
        result: Processing result
    """
    producer_data = {}

    if notification_id is not None:
        producer_data["notification_id"] = notification_id

    if result is not None:
        producer_data["result"] = result

    request.state.producer_log_data = producer_data
