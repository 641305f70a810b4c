"""Retry logic with exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 16.0) -> float:
    """Calculate exponential backoff delay in seconds.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Delay of the first retry
        max_delay: Upper bound of the delay

    Returns:
        Delay in seconds (base, 2*base, 4*base, ... capped at max_delay)
    """
    return min(base_delay * 2**attempt, max_delay)


def should_retry(attempt: int, max_attempts: int = 5) -> bool:
    """Check if we should retry based on attempt number.

    Args:
        attempt: Current attempt number (0-indexed)
        max_attempts: Maximum number of attempts

    Returns:
        True if should retry, False otherwise
    """
    return attempt < max_attempts


class RetryHandler:
    """Handler for retrying operations with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 16.0,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ):
        """Initialize retry handler.

        Args:
            max_attempts: Maximum number of attempts
            base_delay: Delay before the first retry in seconds
            max_delay: Maximum delay between attempts in seconds
            retry_on: Exception types worth retrying; anything else propagates at once
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_on = retry_on

    async def retry_with_backoff(
        self,
        callback: Callable[[], Awaitable[Any]],
        operation_name: str = "operation",
    ) -> Any:
        """Retry an async operation with exponential backoff.

        Args:
            callback: Async function to retry
            operation_name: Name of the operation for logging

        Returns:
            Result of the callback

        Raises:
            Exception: Last exception if all retries fail, or the first
                exception that is not retryable
        """
        for attempt in range(self.max_attempts):
            try:
                return await callback()
            except self.retry_on as e:
                if not should_retry(attempt + 1, self.max_attempts):
                    logger.error(
                        f"{operation_name} failed after {self.max_attempts} attempts: {e}"
                    )
                    raise

                delay = calculate_backoff(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    f"{operation_name} failed (attempt {attempt + 1}/{self.max_attempts}): {e}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

        raise RuntimeError(f"{operation_name} failed: no attempts were made")
