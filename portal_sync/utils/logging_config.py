"""
Structured Logging Configuration

Provides JSON-formatted logging with:
- Request ID tracking
- User context
- Sync job context (job id, job type, attempts)
- Structured output for log aggregation
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')

SENSITIVE_KEYS = ("token", "password", "secret", "authorization", "api_key")


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Outputs logs in JSON format for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        user_id = user_id_var.get()
        if user_id:
            log_data["user_id"] = user_id

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        if hasattr(record, 'job_id'):
            log_data["job_id"] = record.job_id
        if hasattr(record, 'job_type'):
            log_data["job_type"] = record.job_type

        return json.dumps(log_data, ensure_ascii=False, default=str)


def redact(payload: Any) -> Any:
    """Return a copy of payload with credential-like values replaced"""
    if isinstance(payload, dict):
        result = {}
        for k, v in payload.items():
            if any(sk in str(k).lower() for sk in SENSITIVE_KEYS):
                result[k] = "[REDACTED]"
            else:
                result[k] = redact(v)
        return result
    if isinstance(payload, list):
        return [redact(item) for item in payload]
    return payload


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds structured context to log messages.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        job_id: Optional[str] = None,
        job_type: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        """Log with additional structured context."""
        extra = {}
        if job_id:
            extra['job_id'] = job_id
        if job_type:
            extra['job_type'] = job_type
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = redact(extra_data)

        self.log(level, msg, extra=extra)

    def job_enqueued(self, job_id: str, job_type: str, reason: str):
        self.log_with_context(
            logging.WARNING,
            f"Sync job queued: {job_type} ({reason})",
            job_id=job_id,
            job_type=job_type,
            reason=reason
        )

    def job_failed(self, job_id: str, job_type: str, attempts: int, error: str):
        self.log_with_context(
            logging.WARNING,
            f"Sync job still failing after {attempts} attempt(s): {error}",
            job_id=job_id,
            job_type=job_type,
            attempts=attempts
        )

    def drain_finished(self, processed: int, remaining: int, duration_ms: float):
        self.log_with_context(
            logging.INFO,
            f"Sync queue drained: {processed} processed, {remaining} remaining",
            duration_ms=duration_ms,
            processed=processed,
            remaining=remaining
        )

    def portal_request(self, method: str, path: str, status_code: int, duration_ms: float):
        """Log Portal request with performance data."""
        self.log_with_context(
            logging.DEBUG,
            f"Portal {method} {path} - {status_code}",
            duration_ms=duration_ms,
            method=method,
            path=path,
            status_code=status_code
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("portal_sync").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logging.getLogger(logger_name).handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, user_id: Optional[str] = None):
    """Set context for the current request."""
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def clear_request_context():
    request_id_var.set('')
    user_id_var.set('')
