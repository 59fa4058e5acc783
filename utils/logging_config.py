"""
Logging configuration for the cache optimization subsystem.
Console output with level colors, optional structured JSON file output, and
timing helpers for background operations such as warming passes.
"""
import logging
import logging.handlers
import json
import time
import os
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextlib import contextmanager
import asyncio
from functools import wraps


class PerformanceLogger:
    """Logger wrapper with operation timing and structured output."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self._setup_metrics_logging()

    def setup_logging(self, level: str = "INFO", log_file: Optional[str] = None):
        """Attach console (and optionally rotating JSON file) handlers."""

        self.logger.handlers.clear()

        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(self._create_console_formatter())
        self.logger.addHandler(console_handler)

        if log_file:
            try:
                directory = os.path.dirname(log_file)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    log_file,
                    maxBytes=10*1024*1024,  # 10MB
                    backupCount=5
                )
                file_handler.setLevel(log_level)
                file_handler.setFormatter(self._create_structured_formatter())
                self.logger.addHandler(file_handler)
            except OSError as e:
                self.logger.warning(f"Failed to setup file logging: {e}")

        return self.logger

    def _create_console_formatter(self) -> logging.Formatter:
        """Create colored console formatter."""

        class ColoredFormatter(logging.Formatter):
            """Formatter with color coding for different log levels."""

            COLORS = {
                'DEBUG': '\033[36m',     # Cyan
                'INFO': '\033[32m',      # Green
                'WARNING': '\033[33m',   # Yellow
                'ERROR': '\033[31m',     # Red
                'CRITICAL': '\033[35m',  # Magenta
            }
            RESET = '\033[0m'

            def format(self, record):
                color = self.COLORS.get(record.levelname, '')
                original = record.levelname
                record.levelname = f"{color}{record.levelname}{self.RESET}"
                try:
                    return super().format(record)
                finally:
                    record.levelname = original

        return ColoredFormatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
            datefmt='%H:%M:%S'
        )

    def _create_structured_formatter(self) -> logging.Formatter:
        """Create structured JSON formatter for file output."""

        class StructuredFormatter(logging.Formatter):
            """JSON formatter for structured logging."""

            def format(self, record):
                log_entry = {
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    'level': record.levelname,
                    'logger': record.name,
                    'message': record.getMessage(),
                    'module': record.module,
                    'function': record.funcName,
                    'line': record.lineno,
                }

                for attr in ('operation', 'operation_id', 'duration', 'strategy', 'cache_type'):
                    if hasattr(record, attr):
                        log_entry[attr] = getattr(record, attr)

                return json.dumps(log_entry, default=str)

        return StructuredFormatter()

    def _setup_metrics_logging(self):
        """Reset operation counters."""
        self.start_time = time.time()
        self.operation_count = 0
        self.error_count = 0
        self.slow_operations = []

    @contextmanager
    def performance_context(self, operation: str, slow_threshold_seconds: float = 2.0, **kwargs):
        """Context manager for tracking operation performance."""
        start_time = time.time()
        operation_id = f"{operation}_{int(start_time * 1000)}"
        self.operation_count += 1

        try:
            self.logger.debug(f"[PERF] Starting {operation}", extra={
                'operation': operation,
                'operation_id': operation_id,
                **kwargs
            })
            yield operation_id

        except Exception as e:
            duration = time.time() - start_time
            self.error_count += 1
            self.logger.error(f"[PERF] {operation} failed after {duration:.3f}s: {e}", extra={
                'operation': operation,
                'operation_id': operation_id,
                'duration': duration,
                **kwargs
            })
            raise

        else:
            duration = time.time() - start_time
            self.logger.info(f"[PERF] {operation} completed in {duration:.3f}s", extra={
                'operation': operation,
                'operation_id': operation_id,
                'duration': duration,
                **kwargs
            })

            if duration > slow_threshold_seconds:
                self.slow_operations.append({
                    'operation': operation,
                    'duration': duration,
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    'details': kwargs
                })

    def log_warming_result(self, strategy: str, total: int, warmed: int, failed: int,
                           skipped: int, already_cached: int, **kwargs):
        """Log the outcome of one warming strategy execution."""
        self.logger.info(
            f"[WARMING] {strategy}: {warmed}/{total} warmed, {already_cached} already cached, "
            f"{skipped} skipped, {failed} failed",
            extra={
                'operation': 'cache_warming',
                'strategy': strategy,
                **kwargs
            }
        )

    def get_performance_summary(self) -> Dict[str, Any]:
        """Get performance summary statistics."""
        uptime = time.time() - self.start_time

        return {
            'uptime_seconds': uptime,
            'total_operations': self.operation_count,
            'error_count': self.error_count,
            'error_rate': (self.error_count / max(self.operation_count, 1)) * 100,
            'slow_operations_count': len(self.slow_operations),
            'recent_slow_operations': self.slow_operations[-5:] if self.slow_operations else []
        }


def log_performance(operation_name: Optional[str] = None):
    """Decorator to automatically log function performance."""
    def decorator(func):
        perf_logger = PerformanceLogger(func.__module__)
        op_name = operation_name or func.__name__

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            with perf_logger.performance_context(op_name):
                return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with perf_logger.performance_context(op_name):
                return func(*args, **kwargs)

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package loggers once at process start."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        PerformanceLogger("").setup_logging(level, log_file)
    else:
        root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return root_logger
