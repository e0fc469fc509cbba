"""
Retry with exponential backoff for establishing database connections.

Only connection setup is retried. Statements applied during a sync are
never retried: once part of a table has been written, replaying a
statement is not assumed to be safe.

Usage:
    from syncray.utils.retry import retry_with_backoff

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    def connect():
        return pyodbc.connect(connection_string)
"""

import logging
import random
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

# Message fragments of transient connection failures across drivers
TRANSIENT_ERROR_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "could not connect",
    "unable to connect",
    "communication link failure",
    "server closed the connection",
    "the database system is starting up",
    "database is locked",
    "login timeout expired",
    "tcp provider",
)

TRANSIENT_ERROR_TYPES = ("operationalerror", "interfaceerror", "connectionerror", "timeouterror")


def is_transient_connection_error(exception: Exception) -> bool:
    """
    Determine whether a connection failure is worth retrying

    Authentication failures and unknown databases fail immediately; network
    and startup conditions are retried.
    """
    message = str(exception).lower()
    if "password" in message or "login failed" in message or "does not exist" in message:
        return False

    if any(pattern in message for pattern in TRANSIENT_ERROR_PATTERNS):
        return True

    return type(exception).__name__.lower() in TRANSIENT_ERROR_TYPES


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_if: Callable[[Exception], bool] = is_transient_connection_error,
    on_retry: Callable[[int, Exception, float], None] | None = None,
):
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Add +/-25% random jitter to each delay
        retry_if: Predicate deciding whether an exception is retryable
        on_retry: Callback(attempt, exception, delay) called before each retry

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            func_name = getattr(func, "__name__", "function")

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e):
                        logger.error(f"Non-retryable error in {func_name}: {type(e).__name__}: {e}")
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    if jitter:
                        delay += random.uniform(-delay * 0.25, delay * 0.25)
                        delay = max(0.1, delay)

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        on_retry(attempt + 1, e, delay)

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected exit from retry loop in {func_name}")

        return wrapper
    return decorator
