import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from wabot.metrics import record_http_request


# Context variables for the current HTTP request and the message being processed
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
message_id_ctx: ContextVar[Optional[str]] = ContextVar("message_id", default=None)
sender_id_ctx: ContextVar[Optional[str]] = ContextVar("sender_id", default=None)


@contextmanager
def message_context(message_id: str, sender_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with the message and sender."""
    message_token = message_id_ctx.set(message_id)
    sender_token = sender_id_ctx.set(sender_id)
    try:
        yield
    finally:
        message_id_ctx.reset(message_token)
        sender_id_ctx.reset(sender_token)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with ISO-8601 timestamps and request/message context."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        for key, ctx in (
            ('request_id', request_id_ctx),
            ('message_id', message_id_ctx),
            ('sender_id', sender_id_ctx),
        ):
            if key not in log_record:
                value = ctx.get()
                if value:
                    log_record[key] = value


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

    # Route Uvicorn loggers through the JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # The request middleware already logs every request
    logging.getLogger("uvicorn.access").disabled = True

    # httpx logs every gateway call at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys: ts, level, request_id, method, path, status, latency_ms.

    For /webhook requests, also includes:
    - message_id: from request body (when present)
    - result: accepted, invalid_signature, validation_error, error
    - outcome: pipeline terminal state (delivered, dropped, errored)
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

            if hasattr(request.state, "webhook_log_data"):
                log_data.update(request.state.webhook_log_data)

            logger = logging.getLogger("wabot.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_webhook_data(request: Request, message_id: str = None, result: str = None, outcome: str = None):
    """
    Attach webhook-specific logging data to the request state.
    This data will be included in the request log by the middleware.

    Args:
        request: FastAPI request object
        message_id: Message ID from the webhook payload
        result: Webhook handling result
        outcome: Pipeline terminal state, when the message reached the pipeline
    """
    webhook_data = {}

    if message_id is not None:
        webhook_data["message_id"] = message_id

    if result is not None:
        webhook_data["result"] = result

    if outcome is not None:
        webhook_data["outcome"] = outcome

    request.state.webhook_log_data = webhook_data
