"""
Bounded retry with exponential backoff.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional


logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry attempts."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        multiplier: float = 2.0
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


class RetryExecutor:
    """
    Runs an async operation up to ``max_attempts`` times.

    Errors are not classified here: every exception is retried unless the
    optional ``give_up_on`` predicate returns True for it, in which case the
    error is re-raised immediately.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        give_up_on: Optional[Callable[[Exception], bool]] = None
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._give_up_on = give_up_on

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        name: str = "Operation"
    ) -> Any:
        """
        Execute ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine function to attempt
            name: Label used in log messages

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The error of the last failed attempt
        """
        max_attempts = self.config.max_attempts
        last_exception: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                last_exception = e
                logger.warning(f"{name} failed (attempt {attempt}/{max_attempts}): {e}")

                if self._give_up_on and self._give_up_on(e):
                    logger.info(f"{name}: not retrying non-retryable error {type(e).__name__}")
                    raise

                if attempt < max_attempts:
                    await self._sleep(self.config.delay_for(attempt))

        # All retries exhausted
        raise last_exception

    def planned_delays(self) -> List[float]:
        """Delays a fully failing execution would sleep, in order."""
        return [self.config.delay_for(a) for a in range(1, self.config.max_attempts)]
