"""Centralized logging configuration with environment variable support."""

import os
import logging
import sys
from typing import Iterable
from pythonjsonlogger import jsonlogger


class LoggingConfig:
    """Logging settings read from the environment."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_MASK_SENSITIVE = os.environ.get("LOG_MASK_SENSITIVE", "true").lower() == "true"
    LOG_CORRELATION_ID_HEADER = os.environ.get("LOG_CORRELATION_ID_HEADER", "X-Correlation-ID")
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "1000"))

    # Driver and HTTP client chatter
    QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest", "faker")

    _configured = False

    @classmethod
    def build_formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(
                "%(timestamp)s %(levelname)s %(name)s %(message)s",
                timestamp=True
            )
        return logging.Formatter(
            "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s - %(message)s"
        )

    @classmethod
    def setup_logging(cls, filters: Iterable[logging.Filter] = (), force: bool = False) -> None:
        """Install a single stdout handler on the root logger (serverless friendly).

        Repeated calls are no-ops unless ``force`` is set, so every handler
        module can call this at import time.
        """
        if cls._configured and not force:
            return

        level = getattr(logging, cls.LOG_LEVEL, logging.INFO)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(cls.build_formatter())
        for record_filter in filters:
            handler.addFilter(record_filter)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()
        root_logger.addHandler(handler)

        for name in cls.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
