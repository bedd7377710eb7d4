"""
Structured logging for the explorer service
"""

import logging
import json
import sys
import time
import inspect
from typing import Dict, Any, Optional
from datetime import datetime, timezone

# Context fields promoted to top-level keys of a JSON log line
CONTEXT_FIELDS = (
    "correlation_id", "client_ip", "endpoint", "method",
    "block_hash", "tx_id", "address", "op", "connection_state",
    "process_time", "status_code",
)

_RESERVED = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message', 'asctime',
}


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED and key not in CONTEXT_FIELDS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)

class ContextualLogger:
    """Logger with contextual information"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.context: Dict[str, Any] = {}

    def with_context(self, **kwargs) -> 'ContextualLogger':
        """Create a new logger instance with additional context"""
        new_logger = ContextualLogger(self.logger)
        new_logger.context = {**self.context, **kwargs}
        return new_logger

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, *args, **kwargs):
        """Internal logging method that adds context"""
        extra = dict(kwargs.get('extra') or {})
        extra.update(self.context)
        kwargs['extra'] = extra
        kwargs.setdefault('stacklevel', 3)
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)

def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_structured: bool = True
) -> ContextualLogger:
    """Setup structured logging for the application"""

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    if enable_structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, level.upper()))
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return ContextualLogger(root_logger)

def log_performance(logger: ContextualLogger, operation: str):
    """Decorator to log how long an operation took"""
    def decorator(func):
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"Operation failed: {operation}",
                    extra={
                        "operation": operation,
                        "duration": time.time() - start_time,
                        "status": "error",
                        "error": str(e)
                    }
                )
                raise
            logger.debug(
                f"Operation completed: {operation}",
                extra={
                    "operation": operation,
                    "duration": time.time() - start_time,
                    "status": "success"
                }
            )
            return result

        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    f"Operation failed: {operation}",
                    extra={
                        "operation": operation,
                        "duration": time.time() - start_time,
                        "status": "error",
                        "error": str(e)
                    }
                )
                raise
            logger.debug(
                f"Operation completed: {operation}",
                extra={
                    "operation": operation,
                    "duration": time.time() - start_time,
                    "status": "success"
                }
            )
            return result

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper
    return decorator

def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger for a specific module"""
    return ContextualLogger(logging.getLogger(name))
