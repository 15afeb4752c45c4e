"""
Logging Configuration with Correlation ID Support

This module provides:
1. Context variables for the current request's correlation ID and scraping session
2. A log filter that stamps both onto every record
3. setup_logging(), called once from main.py
"""
import logging
import uuid
from contextvars import ContextVar
from typing import Optional, Union

# Works with async code: each request task sees its own values
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
scraping_session_var: ContextVar[Optional[str]] = ContextVar("scraping_session_id", default=None)

# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = ["httpx", "httpcore", "sqlalchemy.engine", "asyncio"]


def get_correlation_id() -> Optional[str]:
    """Get the current request's correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set the correlation ID for the current request.
    If not provided, generates a new one.

    Returns the correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = f"req-{uuid.uuid4().hex[:8]}"
    correlation_id_var.set(correlation_id)
    return correlation_id


def bind_scraping_session(session_id: Optional[str]) -> None:
    """Tag subsequent log lines of this task with a scraping session id."""
    scraping_session_var.set(session_id)


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id and scraping_session to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-request"
        record.scraping_session = scraping_session_var.get() or "-"
        return True


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configure the root logger.

    Format: timestamp | [correlation id] | session | logger | level | message
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    log_format = "%(asctime)s | [%(correlation_id)s] | %(scraping_session)s | %(name)s | %(levelname)s | %(message)s"
    formatter = logging.Formatter(log_format, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicate logs
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)

    # Route uvicorn logs through the same handler
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
