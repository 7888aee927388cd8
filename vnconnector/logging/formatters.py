"""
Log formatters for structured and human-readable output.

Provides:
- JSONFormatter: one JSON object per line, extras nested under "extra"
- ConsoleFormatter: coloured single-line console output
"""

import json
import logging
import traceback
from datetime import datetime, timezone

# LogRecord attributes that are never treated as user extras
_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'correlation_id', 'taskName',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for machine-readable structured logs.

    Output format:
    {
        "timestamp": "2026-01-19T03:30:45.123456+00:00",
        "level": "INFO",
        "logger": "vnconnector.orders",
        "correlation_id": "VN_1768793445123",
        "message": "Order accepted",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, 'correlation_id', None),
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith('_')
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color coding.

    Format:
    [2026-01-19 10:30:45] [INFO    ] [ORDERS      ] [corr:VN_17687] Order accepted
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        level = record.levelname
        if self.use_colors:
            color = self.COLORS.get(level, self.COLORS['RESET'])
            level_str = f"{color}{level:8}{self.COLORS['RESET']}"
        else:
            level_str = f"{level:8}"

        stream = record.name.split('.')[-1].upper()

        corr_id = getattr(record, 'correlation_id', None)
        corr_str = f" [corr:{corr_id[:8]}]" if corr_id else ""

        formatted = f"[{timestamp}] [{level_str}] [{stream:12}]{corr_str} {record.getMessage()}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted
