"""Structured logging configuration with context management."""

import logging
import logging.config
import json
import uuid
from datetime import datetime
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for job/request tracking
log_context: ContextVar[Dict[str, Any]] = ContextVar('log_context', default={})

CONTEXT_FIELDS = ['request_id', 'job_id', 'operation', 'entity_type', 'entity_id', 'duration_ms']

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'message',
    'taskName',
}


class ContextFilter(logging.Filter):
    """Logging filter that adds context information to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = log_context.get({})

        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)

        if not hasattr(record, 'request_id'):
            record.request_id = 'none'
        if not hasattr(record, 'operation'):
            record.operation = 'unknown'

        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in CONTEXT_FIELDS or key.startswith('_'):
                continue
            extra_fields[key] = value

        if extra_fields:
            log_data['extra'] = extra_fields

        return json.dumps(log_data, default=str)


class LogContext:
    """Manages logging context for jobs and requests."""

    @staticmethod
    def set_context(**kwargs) -> None:
        current_context = dict(log_context.get({}))
        current_context.update(kwargs)
        log_context.set(current_context)

    @staticmethod
    def get_context() -> Dict[str, Any]:
        return log_context.get({})

    @staticmethod
    def clear_context() -> None:
        log_context.set({})

    @staticmethod
    def generate_request_id() -> str:
        return str(uuid.uuid4())


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None
) -> None:
    """Setup logging configuration."""

    if log_format.lower() == "json":
        formatter_class = JSONFormatter
        format_string = ""
    else:
        formatter_class = logging.Formatter
        format_string = (
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(operation)s] - %(message)s"
        )

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'detailed': {
                '()': formatter_class,
                'format': format_string
            }
        },
        'filters': {
            'context_filter': {
                '()': ContextFilter
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': log_level,
                'formatter': 'detailed',
                'filters': ['context_filter'],
                'stream': 'ext://sys.stdout'
            }
        },
        'loggers': {
            '': {
                'level': log_level,
                'handlers': ['console'],
                'propagate': False
            },
            'shop_agent': {
                'level': log_level,
                'handlers': ['console'],
                'propagate': False
            },
            'uvicorn': {
                'level': 'INFO',
                'handlers': ['console'],
                'propagate': False
            },
            'httpx': {
                'level': 'WARNING',
                'handlers': ['console'],
                'propagate': False
            },
            'sqlalchemy': {
                'level': 'WARNING',
                'handlers': ['console'],
                'propagate': False
            }
        }
    }

    if log_file:
        config['handlers']['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': log_level,
            'formatter': 'detailed',
            'filters': ['context_filter'],
            'filename': log_file,
            'maxBytes': 10485760,  # 10MB
            'backupCount': 5
        }

        for logger_config in config['loggers'].values():
            logger_config['handlers'].append('file')

    logging.config.dictConfig(config)


class StructuredLogger:
    """Logger wrapper that accepts structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_context(self, level: int, message: str, exc_info: bool = False, **kwargs) -> None:
        extra = dict(LogContext.get_context())
        extra.update(kwargs)
        # LogRecord refuses to overwrite its own attributes
        for key in list(extra):
            if key in _RESERVED_ATTRS:
                extra[f"ctx_{key}"] = extra.pop(key)

        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.ERROR, message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        self._log_with_context(logging.CRITICAL, message, **kwargs)

    def operation_start(self, operation: str, **kwargs) -> None:
        """Log start of an operation."""
        LogContext.set_context(operation=operation)
        self.info(f"Starting operation: {operation}", operation_status="started", **kwargs)

    def operation_end(self, operation: str, duration_ms: Optional[float] = None, **kwargs) -> None:
        """Log end of an operation."""
        log_kwargs = {"operation_status": "completed", **kwargs}
        if duration_ms is not None:
            log_kwargs["duration_ms"] = duration_ms
        self.info(f"Completed operation: {operation}", **log_kwargs)

    def operation_error(self, operation: str, error: Exception, **kwargs) -> None:
        """Log operation error."""
        self.error(
            f"Operation failed: {operation}",
            operation_status="failed",
            error_type=type(error).__name__,
            error_message=str(error),
            **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
