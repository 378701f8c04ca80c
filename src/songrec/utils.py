"""Utility functions and decorators for songrec."""

import time
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Generic, TypeVar, Callable

from .errors import RecommendationError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    should_retry: Callable[[Exception], bool] | None = None,
):
    """
    Decorator that retries a function with exponential backoff on failure.

    Args:
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries (exponential backoff)
        exceptions: Tuple of exception types to catch and retry
        should_retry: Optional predicate; exceptions it rejects are raised immediately

    Example:
        @retry_with_backoff(max_retries=3, initial_delay=0.1)
        def fetch_rows():
            # ... code that might hit a locked database
            pass
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_exception = None

            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e
                    if attempt < max_retries - 1:
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{max_retries}): {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} attempts: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Explicit success/failure value for best-effort sub-calls."""
    value: T | None = None
    error: RecommendationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(func: Callable[..., T], *args, **kwargs) -> Outcome[T]:
    """
    Run ``func`` and capture domain failures as an Outcome.

    Only RecommendationError is captured; anything else is a bug or an
    unexpected fault and propagates.
    """
    try:
        return Outcome(value=func(*args, **kwargs))
    except RecommendationError as exc:
        return Outcome(error=exc)
