"""Retry mechanism with exponential backoff for the assistant subprocess.

This module provides a configurable retry policy and a helper that runs an
async operation sequentially until it succeeds or the attempt budget is
spent.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from codegate.app.core.config import settings
from codegate.app.core.logging import get_logger
from codegate.app.exceptions import AssistantTimeoutError, ExecutionError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts, the first one included (default: 3)
        base_delay_ms: Delay after the first failed attempt (default: 1000)
        max_delay_ms: Upper bound for any single delay (default: 10000)
        exponential_base: Base for exponential calculation (default: 2.0)
        retryable_exceptions: Tuple of exception types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_attempts=5, base_delay_ms=500)
        >>> policy.calculate_delay(attempt=3)  # 500 * 2^2 ms
        2.0
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 10_000.0
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        ExecutionError,
        AssistantTimeoutError,
    )

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.assistant_max_retries,
            base_delay_ms=settings.assistant_retry_base_ms,
            max_delay_ms=settings.assistant_retry_max_delay_ms,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the wait after a failed attempt.

        Uses exponential backoff: delay = min(base_delay_ms * base^(attempt - 1), max_delay_ms)

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Delay in seconds
        """
        delay_ms = self.base_delay_ms * (self.exponential_base ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000

    def is_retryable(self, exception: BaseException) -> bool:
        return isinstance(exception, self.retryable_exceptions)


async def run_with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run operation(attempt) until it succeeds or attempts run out.

    Attempts never overlap: each one finishes (or fails) before the delay
    and the next attempt start.

    Args:
        operation: Async callable receiving the 1-indexed attempt number
        policy: RetryPolicy configuration. Uses defaults if not provided.
        description: Name used in log messages
        sleep: Awaitable delay function

    Returns:
        The operation's result

    Raises:
        The last exception raised by operation once retries are exhausted,
        or immediately for non-retryable exceptions.
    """
    retry_policy = policy or RetryPolicy()
    attempts = max(1, retry_policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await operation(attempt)
        except Exception as e:
            if not retry_policy.is_retryable(e):
                logger.debug(
                    f"Non-retryable exception in {description}: {type(e).__name__}: {e}"
                )
                raise

            if attempt >= attempts:
                logger.warning(
                    f"Max attempts ({attempts}) exhausted for {description}: "
                    f"{type(e).__name__}: {e}",
                    extra={"attempt": attempt},
                )
                raise

            delay = retry_policy.calculate_delay(attempt)
            logger.warning(
                f"Attempt {attempt}/{attempts} for {description} failed "
                f"with {type(e).__name__}: {e}. Waiting {delay:.2f}s...",
                extra={"attempt": attempt},
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
