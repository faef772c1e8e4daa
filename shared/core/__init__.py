"""Shared core utilities: health probes and structured logging."""

from .health import ServiceHealth
from .logging_config import (
    RedactionFilter,
    RequestLoggingMiddleware,
    current_context,
    get_logger,
    set_request_context,
    setup_logging,
)

__all__ = [
    "ServiceHealth",
    "RedactionFilter",
    "RequestLoggingMiddleware",
    "current_context",
    "get_logger",
    "set_request_context",
    "setup_logging",
]
