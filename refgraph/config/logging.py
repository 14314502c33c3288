"""
Refgraph Logging Configuration

Structured logging with JSON format support, editing-session correlation,
performance timing and configurable log levels.
"""

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

# Context variables for editing-session correlation
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
note_id_var: ContextVar[Optional[str]] = ContextVar("note_id", default=None)


# =============================================================================
# Log Level Strategy
# =============================================================================
#
# DEBUG   - Keystroke-level transitions, skipped markers, stale lookups
# INFO    - Commits, entity creation, index rebuilds
# WARNING - Ambiguous resolutions, slow rebuilds, rejected transitions
# ERROR   - Store write failures and rolled back commits
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter.

    Fields passed through ``extra`` with a ``ctx_`` prefix are emitted as
    top-level keys without the prefix.
    """

    def __init__(self, service_name: str = "refgraph", environment: str = "development"):
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.hostname = os.uname().nodename

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "environment": self.environment,
            "hostname": self.hostname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "session_id": session_id_var.get(),
            "note_id": note_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                log_data[key[4:]] = value

        log_data = {k: v for k, v in log_data.items() if v is not None}

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        session_id = session_id_var.get()
        sess_str = f"[{session_id[:8]}]" if session_id else ""

        formatted = (
            f"{timestamp} {color}{record.levelname:8}{self.RESET} "
            f"{sess_str} {record.name} - {record.getMessage()}"
        )

        extras = []
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                extras.append(f"{key[4:]}={value}")
        if extras:
            formatted += f" | {', '.join(extras)}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    service_name: str = "refgraph",
    environment: str = "development",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for refgraph.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging
        service_name: Service name for structured logs
        environment: Environment name (development, staging, production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    if json_format:
        formatter = StructuredFormatter(service_name, environment)
    else:
        formatter = ConsoleFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter(service_name, environment))
        root_logger.addHandler(file_handler)

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# Context Management
# =============================================================================


def set_session_context(
    session_id: Optional[str] = None, note_id: Optional[str] = None
) -> str:
    """
    Set editing-session context for correlation.

    Args:
        session_id: Session ID (generated if not provided)
        note_id: Note being edited

    Returns:
        The session ID being used
    """
    sess_id = session_id or uuid.uuid4().hex
    session_id_var.set(sess_id)
    if note_id:
        note_id_var.set(note_id)
    return sess_id


def clear_session_context() -> None:
    """Clear editing-session context."""
    session_id_var.set(None)
    note_id_var.set(None)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """
    Log a message with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        message: Log message
        **context: Additional context fields
    """
    extra = {f"ctx_{k}": v for k, v in context.items()}
    logger.log(level, message, extra=extra)


# =============================================================================
# Performance Logging Decorator
# =============================================================================

T = TypeVar("T")


def log_performance(threshold_ms: float = 250.0) -> Callable:
    """
    Decorator to log function duration.

    Logs at debug level normally and at warning level when the call takes
    longer than ``threshold_ms``.

    Example:
        @log_performance(threshold_ms=100)
        def rebuild(self, notes):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        logger = logging.getLogger(func.__module__)

        def _report(start_time: float) -> None:
            duration_ms = (time.perf_counter() - start_time) * 1000
            extra = {
                "ctx_function": func.__name__,
                "ctx_duration_ms": round(duration_ms, 2),
            }
            if duration_ms > threshold_ms:
                logger.warning(
                    f"Slow operation: {func.__name__} took {duration_ms:.2f}ms",
                    extra=extra,
                )
            else:
                logger.debug(
                    f"Operation completed: {func.__name__} in {duration_ms:.2f}ms",
                    extra=extra,
                )

        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            start_time = time.perf_counter()
            result = await func(*args, **kwargs)
            _report(start_time)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            start_time = time.perf_counter()
            result = func(*args, **kwargs)
            _report(start_time)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
