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

from requinte_bot.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            log_record['ts'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
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

    # Route uvicorn's loggers through the same JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Our middleware already logs every request
    logging.getLogger("uvicorn.access").disabled = True

    # httpx logs every outbound request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns each request an X-Request-ID, records HTTP metrics (except for
    /metrics itself) and logs one "Request completed" line through the
    requinte_bot.requests logger: info below 400, warning for 4xx, error
    for 5xx.

    Log keys:
    - ts, level, request_id
    - method, path, status
    - latency_ms: request processing time in milliseconds

    POST /webhook/whatsapp also attaches, via log_inbound_data():
    - event: normalized transport event name, e.g. messages.upsert
    - contact: remoteJid of the first message of an upsert batch; absent
      for other events and for rejected requests
    - result: accepted (queued for background handling), ignored (upsert
      with no message to process) or invalid_secret (401, X-Webhook-Secret
      mismatch)

    The conversation outcome is not known here; it is logged by the
    background handler and counted in inbound_messages_total.
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

            if hasattr(request.state, "inbound_log_data"):
                log_data.update(request.state.inbound_log_data)

            logger = logging.getLogger("requinte_bot.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_inbound_data(request: Request, event: str, contact: str = None, result: str = None):
    """
    Attach transport-event logging data to the request state.
    The middleware adds it to the request log line.

    Args:
        request: FastAPI request object
        event: transport event name (messages.upsert, connection.update, ...)
        contact: remote JID of the processed message
        result: accepted, ignored or invalid_secret
    """
    inbound_data = {"event": event}

    if contact is not None:
        inbound_data["contact"] = contact

    if result is not None:
        inbound_data["result"] = result

    request.state.inbound_log_data = inbound_data
