"""
Logging Utility Module for SQL Repair Agent
Provides structured logging carrying the request and repair-attempt context
"""
from __future__ import annotations

import json
import logging
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, Optional

# Thread-local storage for request context
_thread_local = threading.local()

_CONTEXT_FIELDS = ("correlation_id", "request_id", "attempt_index")


def _current_context() -> Dict[str, Any]:
    return {
        name: getattr(_thread_local, name)
        for name in _CONTEXT_FIELDS
        if getattr(_thread_local, name, None) is not None
    }


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_entry.update(_current_context())

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter for development"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        context = _current_context()

        prefix_parts = []
        if "request_id" in context:
            prefix_parts.append(f"[req:{context['request_id'][:8]}]")
        if "attempt_index" in context:
            prefix_parts.append(f"[attempt:{context['attempt_index']}]")
        prefix = " ".join(prefix_parts)
        if prefix:
            prefix = f"{prefix} "

        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        formatted = (
            f"{color}{timestamp} | {record.levelname:8s}{self.RESET} | "
            f"{record.name:30s} | {prefix}{record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that includes request context information"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(_current_context())
        kwargs['extra'] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (for production)
        log_file: Optional file path for logging
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_format:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    # Drivers and AWS SDK are chatty at INFO
    for logger_name in ['boto3', 'botocore', 'urllib3', 'mysql.connector', 'oracledb']:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger"""
    return ContextLogger(logging.getLogger(name), {})


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID for the current thread"""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _thread_local.correlation_id = correlation_id
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for the current thread"""
    return getattr(_thread_local, 'correlation_id', None)


def clear_context() -> None:
    """Clear all thread-local context"""
    for attr in _CONTEXT_FIELDS:
        if hasattr(_thread_local, attr):
            delattr(_thread_local, attr)


@contextmanager
def log_context(
    correlation_id: Optional[str] = None,
    request_id: Optional[str] = None,
    attempt_index: Optional[int] = None
) -> Generator[None, None, None]:
    """
    Context manager for setting logging context

    Usage:
        with log_context(request_id=request.request_id):
            logger.info("Processing question")
    """
    new_values = {
        "correlation_id": correlation_id,
        "request_id": request_id,
        "attempt_index": attempt_index,
    }
    previous = {name: getattr(_thread_local, name, None) for name in _CONTEXT_FIELDS}

    try:
        for name, value in new_values.items():
            if value is not None:
                setattr(_thread_local, name, value)
        yield
    finally:
        for name, value in previous.items():
            if value is not None:
                setattr(_thread_local, name, value)
            elif hasattr(_thread_local, name):
                delattr(_thread_local, name)


@contextmanager
def log_operation(
    logger: ContextLogger,
    operation: str,
    **extra_fields: Any
) -> Generator[Dict[str, Any], None, None]:
    """
    Context manager for logging operation timing

    Usage:
        with log_operation(logger, "repair_loop", dialect="SQLite") as ctx:
            result = run_loop()
            ctx['attempts'] = len(result.attempts)
    """
    start_time = time.time()
    context: Dict[str, Any] = {"operation": operation, **extra_fields}

    logger.info(f"Starting {operation}", extra={"extra_fields": context})

    try:
        yield context
        context['duration_ms'] = round((time.time() - start_time) * 1000, 2)
        context['status'] = 'success'
        logger.info(f"Completed {operation}", extra={"extra_fields": context})
    except Exception as e:
        context['duration_ms'] = round((time.time() - start_time) * 1000, 2)
        context['status'] = 'error'
        context['error'] = str(e)
        context['error_type'] = type(e).__name__
        logger.error(f"Failed {operation}", extra={"extra_fields": context})
        raise
