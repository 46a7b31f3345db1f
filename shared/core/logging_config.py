"""
Structured JSON logging for the checkout service.

Every record is one JSON object on stdout carrying the service identity, the
request trace context (request id, correlation id, user id) and any
``extra={'extra_fields': {...}}`` passed by the caller. Card data, secrets and
tokens are redacted before a record reaches a handler.
"""

import logging
import logging.handlers
import os
import re
import sys
import json
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

REDACTED = "***REDACTED***"

class StructuredFormatter(logging.Formatter):
    """JSON formatter; field names follow the ELK / CloudWatch conventions."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'unknown-service'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
        }

        trace_context = self._get_trace_context(record)
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "module": record.module
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str)

    def _get_trace_context(self, record: logging.LogRecord) -> Optional[Dict[str, Any]]:
        context = {}
        for key, var in (("request_id", request_id_var),
                         ("correlation_id", correlation_id_var),
                         ("user_id", user_id_var)):
            value = getattr(record, key, None) or var.get()
            if value:
                context[key] = value
        return context or None

class PerformanceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, 'duration'):
            record.duration_ms = record.duration * 1000
        return True

class SecurityFilter(logging.Filter):
    """Redacts secrets and payment card data from messages and custom fields."""

    SENSITIVE_FIELDS = (
        'password', 'token', 'api_key', 'secret', 'authorization', 'cookie',
        'card_number', 'cardnumber', 'cvv', 'cvc', 'expiry',
    )
    # key=value / key: value pairs naming a sensitive field
    PAIR_PATTERN = re.compile(
        r'(?i)\b(' + '|'.join(SENSITIVE_FIELDS) + r')(["\']?\s*[:=]\s*["\']?)([^\s,"\'}]+)'
    )
    # 13-19 digit runs, optionally grouped, look like card numbers
    CARD_PATTERN = re.compile(r'\b(?:\d[ -]?){12,18}\d\b')

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        if isinstance(getattr(record, 'extra_fields', None), dict):
            record.extra_fields = self.redact_fields(record.extra_fields)
        return True

    def redact_text(self, text: str) -> str:
        text = self.PAIR_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)
        return self.CARD_PATTERN.sub(REDACTED, text)

    def redact_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for key, value in fields.items():
            if any(s in str(key).lower() for s in self.SENSITIVE_FIELDS):
                cleaned[key] = REDACTED
            elif isinstance(value, dict):
                cleaned[key] = self.redact_fields(value)
            elif isinstance(value, str):
                cleaned[key] = self.redact_text(value)
            else:
                cleaned[key] = value
        return cleaned

def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    log_file: str = None
) -> None:
    """
    Configure root logging for a service.

    Args:
        service_name: Reported as ``service`` on every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Write JSON lines to stdout
        enable_file: Also write to a rotating file
        log_file: Path of the rotating file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    formatter = StructuredFormatter()
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if enable_file and log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(PerformanceFilter())
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={
            'extra_fields': {
                'service': service_name,
                'level': level,
                'handlers': {'console': enable_console, 'file': enable_file and bool(log_file)}
            }
        }
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Stamps the current request context onto every record."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        for key, var in (("request_id", request_id_var),
                         ("correlation_id", correlation_id_var),
                         ("user_id", user_id_var)):
            value = var.get()
            if value:
                extra[key] = value
        kwargs['extra'] = extra
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if user_id:
        user_id_var.set(user_id)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with its duration and echoes ``X-Request-ID``.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(
            request_id=request_id,
            correlation_id=request.headers.get('X-Correlation-ID')
        )

        logger = get_logger(__name__)
        fields = {'method': request.method, 'path': request.url.path}
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': {**fields, 'duration_ms': (time.perf_counter() - start_time) * 1000}}
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={'extra_fields': {
                **fields,
                'status_code': response.status_code,
                'duration_ms': (time.perf_counter() - start_time) * 1000,
            }}
        )
        response.headers['X-Request-ID'] = request_id
        return response
