"""Structured logging for the marketplace services.

Every record carries the request correlation id and the service name.
Account ids and email addresses are masked before they reach a log line
when ``LOG_MASK_SENSITIVE`` is on.
"""

import hashlib
import inspect
import logging
import re
import time
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Optional

from ulid import ULID

from src.utils.config import MarketplaceConfig
from src.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

_EMAIL_PATTERN = re.compile(r'([A-Z0-9._%+-]+)@([A-Z0-9.-]+\.[A-Z]{2,})', re.IGNORECASE)
_SECRET_PATTERN = re.compile(
    r'(?i)(service[_-]?role[_-]?key|api[_-]?key|token|secret|password)([\s:=]+)([A-Za-z0-9_.-]{16,})'
)


def generate_correlation_id() -> str:
    """New request id, sortable by creation time."""
    return f"req_{str(ULID()).lower()}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id_var.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Bind a correlation id (given or generated) for the duration of a request."""
    token = _correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id_var.get()
    finally:
        _correlation_id_var.reset(token)


def mask_email(email: str) -> str:
    """``jordan@example.com`` -> ``jo***@example.com``."""
    if not email or not LoggingConfig.LOG_MASK_SENSITIVE:
        return email
    match = _EMAIL_PATTERN.fullmatch(email)
    if not match:
        return email
    return f"{match.group(1)[:2]}***@{match.group(2)}"


def mask_sensitive_data(text: str) -> str:
    """Mask email addresses and credentials embedded in free text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    text = _EMAIL_PATTERN.sub(lambda m: mask_email(m.group(0)), text)
    return _SECRET_PATTERN.sub(r'\1\2[REDACTED]', text)


def mask_user_id(user_id: str) -> str:
    """Shorten long account ids to a prefix plus a stable hash."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id:
        return user_id

    if len(user_id) > 12:
        hashed = hashlib.sha256(user_id.encode()).hexdigest()[:8]
        return f"{user_id[:4]}...{hashed}"
    return user_id


class RequestContextFilter(logging.Filter):
    """Stamp every record with the service name and current correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "-"
        if not getattr(record, "service", None):
            record.service = MarketplaceConfig.SERVICE_NAME
        return True


class StructuredLogger:
    """Logger wrapper that accepts structured fields as keyword arguments.

    ``bind`` returns a child logger that adds the given fields to every
    record it emits.
    """

    def __init__(self, logger: logging.Logger, **bound: Any):
        self.logger = logger
        self.bound = bound

    def bind(self, **fields: Any) -> "StructuredLogger":
        return StructuredLogger(self.logger, **{**self.bound, **fields})

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = {**self.bound, **fields}
        correlation_id = get_correlation_id()
        if correlation_id:
            extra.setdefault("correlation_id", correlation_id)
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **fields)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Time a block; slow blocks are reported at warning level."""
    log = (logger or get_structured_logger(__name__)).bind(operation=operation_name, **context)
    threshold_ms = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS
    outcome = "ok"
    start_time = time.perf_counter()

    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if elapsed_ms > threshold_ms:
            log.warning(
                f"Slow operation detected: {operation_name}",
                processing_time_ms=elapsed_ms,
                threshold_ms=threshold_ms,
                outcome=outcome,
            )
        else:
            log.debug(f"Completed {operation_name}", processing_time_ms=elapsed_ms, outcome=outcome)


def timed(operation_name: Optional[str] = None, logger: Optional[StructuredLogger] = None):
    """Decorator form of ``log_timing`` for sync and async callables."""
    def decorator(func: Callable) -> Callable:
        op_name = operation_name or func.__qualname__
        log = logger or get_structured_logger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with log_timing(op_name, logger=log):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with log_timing(op_name, logger=log):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator


def setup_logging() -> logging.Logger:
    """Configure root logging once and return the package logger."""
    LoggingConfig.setup_logging(filters=[RequestContextFilter()])
    return get_logger("src")
