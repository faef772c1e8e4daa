"""
Structured JSON logging for the storefront API.

Every record is one JSON object carrying the service identity, the request
context (request id, correlation id, authenticated user) and, when present,
the ``extra_fields`` dict passed by the caller. Credentials for QPay and
bearer tokens are redacted before a record leaves the process.
"""

import logging
import logging.handlers
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

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

REDACTED = "***REDACTED***"


class ServiceIdentity:
    name = "storefront-api"
    environment = "development"
    version = "1.0.0"


class StructuredFormatter(logging.Formatter):
    """One JSON document per record (ELK / CloudWatch friendly)."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": ServiceIdentity.name,
            "environment": ServiceIdentity.environment,
            "version": ServiceIdentity.version,
        }

        trace = current_context()
        if trace:
            log_obj["trace"] = trace

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class RedactionFilter(logging.Filter):
    """Masks secrets in messages and in ``extra_fields``."""

    SENSITIVE_KEYS = (
        'password', 'passwd', 'secret', 'token', 'access_token', 'refresh_token',
        'authorization', 'api_key', 'cookie', 'qpay_login',
    )
    # key=value, key: value and "key": "value" forms
    KEY_VALUE_RE = re.compile(
        r'(?i)("?(?:' + '|'.join(SENSITIVE_KEYS) + r')"?\s*[:=]\s*"?)([^"\s,}]+)'
    )
    BEARER_RE = re.compile(r'(?i)(bearer|basic)\s+[A-Za-z0-9\-._~+/]+=*')

    def redact(self, text: str) -> str:
        text = self.BEARER_RE.sub(lambda m: f"{m.group(1)} {REDACTED}", text)
        return self.KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}{REDACTED}", text)

    def _redact_fields(self, fields: Any) -> Any:
        if isinstance(fields, dict):
            return {
                k: REDACTED if any(s in str(k).lower() for s in self.SENSITIVE_KEYS)
                else self._redact_fields(v)
                for k, v in fields.items()
            }
        if isinstance(fields, list):
            return [self._redact_fields(v) for v in fields]
        if isinstance(fields, str):
            return self.redact(fields)
        return fields

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if hasattr(record, 'extra_fields'):
            record.extra_fields = self._redact_fields(record.extra_fields)
        return True


class PerformanceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, 'duration'):
            record.duration_ms = record.duration * 1000
        return True


def setup_logging(
    service_name: str,
    level: str = "INFO",
    environment: str = "development",
    version: str = "1.0.0",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for JSON output.

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Deployment environment (development/staging/production)
        version: Service version
        log_file: Optional rotating log file in addition to stdout
    """
    ServiceIdentity.name = service_name
    ServiceIdentity.environment = environment
    ServiceIdentity.version = version

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(
            logging.handlers.RotatingFileHandler(log_file, maxBytes=10485760, backupCount=5)  # 10MB
        )
    formatter = StructuredFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(PerformanceFilter())
        handler.addFilter(RedactionFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': bool(log_file)}},
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Keeps caller-supplied ``extra`` intact; context is added by the formatter."""

    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})
        return msg, kwargs


def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})


def current_context() -> Optional[Dict[str, str]]:
    context = {
        "request_id": request_id_var.get(),
        "correlation_id": correlation_id_var.get(),
        "user_id": user_id_var.get(),
    }
    context = {k: v for k, v in context.items() if v}
    return context or None


def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None,
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
    """Logs request start/completion with duration and echoes X-Request-ID."""

    SKIP_PATHS = ("/health/live",)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        tokens = [
            request_id_var.set(request_id),
            correlation_id_var.set(request.headers.get('X-Correlation-ID') or request_id),
            user_id_var.set(None),
        ]
        logger = get_logger(__name__)
        quiet = request.url.path in self.SKIP_PATHS
        fields = {'method': request.method, 'path': request.url.path}

        if not quiet:
            logger.info(
                f"Request started: {request.method} {request.url.path}",
                extra={'extra_fields': {**fields, 'client_host': request.client.host if request.client else None}},
            )
        start_time = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    f"Request failed: {request.method} {request.url.path}",
                    exc_info=True,
                    extra={'extra_fields': {**fields, 'duration_ms': (time.perf_counter() - start_time) * 1000}},
                )
                raise

            if not quiet:
                log = logger.warning if response.status_code >= 500 else logger.info
                log(
                    f"Request completed: {request.method} {request.url.path}",
                    extra={'extra_fields': {
                        **fields,
                        'status_code': response.status_code,
                        'duration_ms': (time.perf_counter() - start_time) * 1000,
                    }},
                )
            response.headers['X-Request-ID'] = request_id
            return response
        finally:
            for var, token in zip((request_id_var, correlation_id_var, user_id_var), tokens):
                var.reset(token)
