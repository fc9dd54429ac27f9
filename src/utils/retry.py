"""Bounded retry with exponential backoff and jitter."""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from utils.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """How many times to try a call and how long to wait in between.

    max_attempts counts the first call, so 1 means no retry.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (0-indexed).

        Grows exponentially up to max_delay; jitter adds up to 10% on top.
        """
        delay = min(self.initial_delay * self.exponential_base**attempt, self.max_delay)
        if self.jitter:
            delay *= 1 + 0.1 * random.random()
        return delay


def retry_sync(
    func: Callable[..., Any],
    *args: Any,
    config: Optional[RetryConfig] = None,
    logger: Optional[structlog.BoundLogger] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> Any:
    """Call func until it succeeds, a non-retryable error occurs or attempts run out.

    Args:
        func: Callable to retry
        *args: Positional arguments for func
        config: Retry configuration (defaults if None)
        logger: Optional logger instance
        sleep: Sleep function, replaceable in tests
        **kwargs: Keyword arguments for func

    Returns:
        The first successful result

    Raises:
        The last retryable error once attempts are exhausted, or any other
        error immediately
    """
    config = config or RetryConfig()
    logger = logger or get_logger("retry")

    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except config.retryable_exceptions as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.error("Giving up after retries", attempts=attempt, error=str(e))
                raise

            delay = config.delay(attempt - 1)
            logger.warning(
                "Attempt failed, retrying",
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay=f"{delay:.2f}s",
                error=str(e),
            )
            sleep(delay)
