"""
Reading Goals - Database Retry Logic
Exponential backoff retry for goal store operations
"""

import time
import threading
from typing import TypeVar, Callable, Optional
from functools import wraps

import config
from core.logger import log_warning, log_error
from goals.errors import TransientStoreError, OperationCancelled

T = TypeVar('T')


class RetryConfig:
    """Configuration for database retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.1,
        backoff_multiplier: float = 2.0,
        max_delay: float = 2.0
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_delay = max_delay

    @classmethod
    def from_config(cls) -> "RetryConfig":
        """Build the retry configuration from config.py values."""
        return cls(
            max_attempts=config.DB_MAX_ATTEMPTS,
            initial_delay=config.DB_RETRY_INITIAL_DELAY,
            backoff_multiplier=config.DB_RETRY_BACKOFF_MULTIPLIER,
            max_delay=config.DB_RETRY_MAX_DELAY
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": f"{self.initial_delay}s",
            "backoff_multiplier": f"{self.backoff_multiplier}x",
            "max_delay": f"{self.max_delay}s"
        }


def execute_with_retry(
    func: Callable[[], T],
    retry_config: Optional[RetryConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Execute a store operation, retrying transient failures.

    Each attempt must be a complete transaction: a failed attempt has rolled
    back, so running it again from the start is safe.

    Args:
        func: The function to execute (no arguments)
        retry_config: Backoff settings (defaults to config.py values)
        cancel_event: Checked before every attempt; never mid-transaction
        sleep: Delay function

    Returns:
        The result of the function

    Raises:
        TransientStoreError: If every attempt failed transiently
        OperationCancelled: If cancel_event was set before an attempt began
    """
    retry_config = retry_config or RetryConfig.from_config()
    delay = retry_config.initial_delay

    for attempt in range(1, retry_config.max_attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled()

        try:
            return func()

        except TransientStoreError as e:
            if attempt >= retry_config.max_attempts:
                log_error(f"Store operation failed after {attempt} attempts: {e}")
                raise

            log_warning(
                f"Store busy (attempt {attempt}/{retry_config.max_attempts}), "
                f"retrying in {delay:.2f}s..."
            )
            sleep(delay)
            delay = min(delay * retry_config.backoff_multiplier, retry_config.max_delay)

    # Should not reach here, but just in case
    raise TransientStoreError()


def db_retry(retry_config: Optional[RetryConfig] = None):
    """
    Decorator for retrying store operations with exponential backoff.

    Args:
        retry_config: Backoff settings (defaults to config.py values)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return execute_with_retry(
                lambda: func(*args, **kwargs),
                retry_config=retry_config
            )

        return wrapper
    return decorator
