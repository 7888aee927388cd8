"""
Logging infrastructure for the Vietnam connector.

Features:
- JSON structured logging per stream
- Correlation ID tracking (trace one order through gate, transport and response)
- Performance timing decorator
- Log rotation
"""

from .logger import (
    get_logger,
    setup_logging,
    LogContext,
    log_performance,
    set_correlation_id,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "log_performance",
    "set_correlation_id",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
]
