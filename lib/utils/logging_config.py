"""
Logging Configuration

Structured console logging shared by parsers, processor and tax engine.
- One handler per named logger, no propagation to root
- Level from LOG_LEVEL (default INFO)
- Optional key/value context rendered after the message
- Timing helper for parse and matching passes
"""

import logging
import os
import sys
import time
from datetime import datetime
from typing import Optional


class StructuredFormatter(logging.Formatter):
    """
    Format: [TIMESTAMP] [LEVEL] [MODULE:FUNCTION:LINE] MESSAGE key=value ...
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        location = f"{record.module}:{record.funcName}:{record.lineno}"

        base_msg = f"[{timestamp}] [{record.levelname:8s}] [{location}] {record.getMessage()}"

        context = getattr(record, 'context', None)
        if context:
            pairs = ' '.join(f"{key}={value}" for key, value in context.items())
            base_msg += f" {pairs}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


class PerformanceLogger:
    """Context manager that logs how long an operation took."""

    def __init__(self, logger: logging.Logger, operation: str, threshold_ms: float = 1000):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type is not None:
            self.logger.warning(f"{self.operation} failed after {duration_ms:.1f}ms")
        elif duration_ms > self.threshold_ms:
            self.logger.warning(f"SLOW: {self.operation} took {duration_ms:.1f}ms")
        else:
            self.logger.debug(f"{self.operation} took {duration_ms:.1f}ms")


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with structured formatting.

    Args:
        name: Logger name (usually __name__)
        level: Log level name. Defaults to LOG_LEVEL env var or INFO

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    if level is None:
        level = os.getenv('LOG_LEVEL', 'INFO').upper()

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(StructuredFormatter())
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger


def get_perf_logger(logger: logging.Logger, operation: str, threshold_ms: float = 1000):
    """
    Usage:
        with get_perf_logger(logger, "parse degiro upload", threshold_ms=500):
            transactions = parser.parse(stream)
    """
    return PerformanceLogger(logger, operation, threshold_ms)
