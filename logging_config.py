#!/usr/bin/env python3
"""
logging_config.py - Structured Logging Configuration for the Plaid Test Kit
---------------------------------------------------------------------------

Provides a consistent, structured logging setup with:
  - JSON-formatted logs for production (machine-parseable)
  - Human-readable colored logs for development
  - Context injection (request IDs)
  - Specialized loggers for webhook, auth and Plaid API events
  - Log rotation
"""

import os
import sys
import json
import time
import logging
import traceback
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler
from contextlib import contextmanager

# Thread-local storage for request context
_context = threading.local()

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'message', 'thread',
    'threadName', 'taskName',
))


# =============================================================================
# LOG FORMATTERS
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production."""

    def __init__(self, include_timestamp: bool = True, include_context: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_timestamp:
            log_data["timestamp"] = datetime.now(timezone.utc).isoformat()

        if self.include_context and getattr(_context, 'data', None):
            log_data["context"] = dict(_context.data)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for development console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[41m',  # Red background
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8}{self.RESET}"

        context_str = ""
        if getattr(_context, 'data', None):
            context_parts = [f"{k}={v}" for k, v in _context.data.items()]
            context_str = f" [{', '.join(context_parts)}]"

        log_line = f"{timestamp} {level} {record.name:25}{context_str} | {record.getMessage()}"

        if record.exc_info:
            log_line += f"\n{self.COLORS['ERROR']}"
            log_line += "".join(traceback.format_exception(*record.exc_info))
            log_line += self.RESET

        return log_line


# =============================================================================
# CONTEXT MANAGEMENT
# =============================================================================

def set_context(**kwargs) -> None:
    """Set logging context for the current thread."""
    if not hasattr(_context, 'data'):
        _context.data = {}
    _context.data.update(kwargs)


def clear_context() -> None:
    """Clear logging context for the current thread."""
    if hasattr(_context, 'data'):
        _context.data.clear()


def mask_key_id(key_id: Optional[str]) -> Optional[str]:
    """Shorten an API key id for log lines. Ids of six characters or fewer are fully hidden."""
    if not key_id:
        return None
    return f"{key_id[:6]}..." if len(key_id) > 6 else '***'


@contextmanager
def log_timing(logger: logging.Logger, operation: str, level: int = logging.DEBUG):
    """Context manager to log operation timing."""
    start_time = time.perf_counter()
    try:
        yield
        elapsed = (time.perf_counter() - start_time) * 1000
        logger.log(level, f"{operation} completed in {elapsed:.2f}ms")
    except Exception as e:
        elapsed = (time.perf_counter() - start_time) * 1000
        logger.warning(f"{operation} failed after {elapsed:.2f}ms: {type(e).__name__}")
        raise


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    app_name: str = "plaid_test_kit",
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    json_format: bool = False,
    console_output: bool = True,
    file_output: bool = True,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure structured logging for the application.

    Args:
        app_name: Base name for the log files
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON formatting on the console (for production)
        console_output: Output logs to console
        file_output: Output logs to files
        max_file_size_mb: Max size per log file before rotation
        backup_count: Number of backup log files to keep

    Returns:
        The configured root logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(JSONFormatter() if json_format else ColoredFormatter())
        root_logger.addHandler(console_handler)

    if file_output:
        if log_dir is None:
            log_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        main_handler = RotatingFileHandler(
            log_path / f"{app_name}.log",
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        main_handler.setLevel(level)
        main_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(main_handler)

        error_handler = RotatingFileHandler(
            log_path / f"{app_name}_errors.log",
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(error_handler)

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('plaid').setLevel(logging.WARNING)

    return root_logger


# =============================================================================
# SPECIALIZED LOGGERS
# =============================================================================

class WebhookLogger:
    """Specialized logger for webhook ingestion and management."""

    def __init__(self, name: str = "plaid_test_kit.webhooks"):
        self.logger = logging.getLogger(name)

    def received(self, source_ip: str, body_size: int):
        self.logger.info(
            f"Webhook received from {source_ip}",
            extra={
                "event": "webhook_received",
                "source_ip": source_ip,
                "body_size": body_size,
            }
        )

    def processed(self, webhook_type: str, item_id: str):
        self.logger.info(
            f"Webhook {webhook_type} for item {item_id} processed",
            extra={
                "event": "webhook_processed",
                "webhook_type": webhook_type,
                "item_id": item_id,
            }
        )

    def rejected(self, reason: str, source_ip: str):
        self.logger.warning(
            f"Webhook rejected: {reason}",
            extra={
                "event": "webhook_rejected",
                "reason": reason,
                "source_ip": source_ip,
            }
        )

    def purged(self, count: int):
        self.logger.info(
            f"Purged {count} old webhooks",
            extra={"event": "webhooks_purged", "count": count}
        )


class AuthLogger:
    """Specialized logger for credential events. Never pass secrets here."""

    def __init__(self, name: str = "plaid_test_kit.auth"):
        self.logger = logging.getLogger(name)

    def event(self, event: str, client_id: Optional[str] = None, **details):
        self.logger.info(
            f"Auth: {event}",
            extra={
                "event": "auth",
                "auth_event": event,
                "client_id": mask_key_id(client_id),
                **details,
            }
        )


class PlaidLogger:
    """Specialized logger for Plaid API calls."""

    def __init__(self, name: str = "plaid_test_kit.plaid"):
        self.logger = logging.getLogger(name)

    def call(self, endpoint: str, success: bool = True, **details):
        level = logging.INFO if success else logging.WARNING
        self.logger.log(
            level,
            f"Plaid {endpoint} {'succeeded' if success else 'failed'}",
            extra={
                "event": "plaid_call",
                "endpoint": endpoint,
                "success": success,
                **details,
            }
        )


class APILogger:
    """Specialized logger for HTTP requests."""

    def __init__(self, name: str = "plaid_test_kit.api"):
        self.logger = logging.getLogger(name)

    def request_completed(self, method: str, path: str, status_code: int,
                          duration_ms: float, request_id: str):
        level = logging.INFO if status_code < 400 else logging.WARNING
        self.logger.log(
            level,
            f"{method} {path} -> {status_code} ({duration_ms:.2f}ms)",
            extra={
                "event": "request_completed",
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                "request_id": request_id,
            }
        )


# =============================================================================
# FLASK INTEGRATION
# =============================================================================

def flask_request_logger(app):
    """Add request logging middleware to Flask app."""
    import uuid
    from flask import request, g

    api_logger = APILogger()

    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()
        set_context(request_id=g.request_id)

    @app.after_request
    def after_request(response):
        if hasattr(g, 'start_time'):
            duration_ms = (time.perf_counter() - g.start_time) * 1000
            api_logger.request_completed(
                request.method,
                request.path,
                response.status_code,
                duration_ms,
                getattr(g, 'request_id', 'unknown')
            )

        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id

        clear_context()
        return response

    return app


# =============================================================================
# INITIALIZATION
# =============================================================================

def init_logging(settings) -> None:
    """Initialize logging from application settings."""
    json_format = settings.is_production
    setup_logging(
        log_level=settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR,
        json_format=json_format,
        console_output=True,
        file_output=settings.LOG_TO_FILE,
    )
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "json_format": json_format,
        }
    )


__all__ = [
    'setup_logging',
    'init_logging',
    'set_context',
    'clear_context',
    'log_timing',
    'WebhookLogger',
    'AuthLogger',
    'PlaidLogger',
    'APILogger',
    'flask_request_logger',
    'JSONFormatter',
    'ColoredFormatter',
]
