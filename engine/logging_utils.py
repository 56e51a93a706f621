"""
Logging utilities with correlation ID support for better tracing

Report runs and API requests each get a correlation ID so that the log lines
of one report (including those emitted from worker threads) can be grouped.
"""
import sys
import uuid
from typing import Optional
from contextvars import ContextVar
from functools import wraps
from loguru import logger

# Context variable to store correlation ID across calls
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | <level>{message}</level>"
)

# Records logged without bind() still need the key for the format string
logger.configure(extra={"correlation_id": "-"})


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID"""
    return correlation_id.get()


def set_correlation_id(cid: Optional[str]) -> None:
    """Set the correlation ID for the current context"""
    correlation_id.set(cid)


def with_correlation_id(func):
    """
    Decorator to automatically generate and set correlation ID for a function

    Usage:
        @with_correlation_id
        def my_function():
            log_with_context("info", "This will include correlation ID")
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not get_correlation_id():
            set_correlation_id(generate_correlation_id())

        logger.bind(correlation_id=get_correlation_id()).debug(
            f"Entering {func.__name__}"
        )

        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.bind(correlation_id=get_correlation_id()).error(
                f"Error in {func.__name__}: {str(e)}"
            )
            raise
        finally:
            logger.bind(correlation_id=get_correlation_id()).debug(
                f"Exiting {func.__name__}"
            )

    return wrapper


def log_with_context(level: str, message: str, **kwargs):
    """
    Log a message with correlation ID automatically included

    Args:
        level: Log level (info, debug, warning, error, etc.)
        message: Log message
        **kwargs: Additional context to include in the log
    """
    cid = get_correlation_id() or "-"
    log_method = getattr(logger.bind(correlation_id=cid, **kwargs), level)
    log_method(message)


class LogContext:
    """Context manager for logging an operation under its own correlation ID"""

    def __init__(self, operation: str):
        self.operation = operation
        self.cid = None
        self._previous = None

    def __enter__(self):
        self._previous = get_correlation_id()
        self.cid = self._previous or generate_correlation_id()
        set_correlation_id(self.cid)
        logger.bind(correlation_id=self.cid).info(f"Starting operation: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.bind(correlation_id=self.cid).error(
                f"Operation {self.operation} failed: {exc_val}"
            )
        else:
            logger.bind(correlation_id=self.cid).info(
                f"Operation {self.operation} completed successfully"
            )
        set_correlation_id(self._previous)
        return False


def configure_logging(level: str = "INFO", log_file_path: Optional[str] = None) -> None:
    """
    Configure loguru sinks: stdout plus an optional rotating file

    Call this at application startup.
    """
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)
    if log_file_path:
        logger.add(
            log_file_path,
            format=LOG_FORMAT,
            level=level,
            rotation="10 MB",
            retention="14 days"
        )
