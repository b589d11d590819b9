"""Bounded retry with exponential backoff.

Generic primitive: it knows nothing about notifications. Callers hand it a
zero-argument operation and, optionally, a hook that runs before every retry.
"""

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from notifier.common.logging import logger


T = TypeVar("T")


def _retry_everything(exc: Exception) -> bool:
    return True


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, max_attempts: int, last_error: Exception | None) -> None:
        super().__init__(f"retries exhausted after {max_attempts} attempts: {last_error}")
        self.max_attempts = max_attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """`max_attempts` total attempts; delays grow by `multiplier` up to `max_delay`."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    retry_on: Callable[[Exception], bool] = _retry_everything
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    @classmethod
    def from_settings(cls, config, **overrides) -> "RetryPolicy":
        """Build a policy from `CommonSettings` retry fields (milliseconds)."""

        values = {
            "max_attempts": config.retry_max_attempts,
            "initial_delay": config.retry_initial_delay_ms / 1000.0,
            "multiplier": config.retry_multiplier,
            "max_delay": config.retry_max_delay_ms / 1000.0,
        }
        values.update(overrides)
        return cls(**values)

    def delay_before(self, attempt: int) -> float:
        """Backoff in seconds slept before `attempt` (no delay before the first)."""

        if attempt <= 1:
            return 0.0
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 2))

    def execute(
        self,
        operation: Callable[[], T],
        before_retry: Callable[[int], None] | None = None,
    ) -> T:
        """Run `operation` until it succeeds or attempts run out.

        Non-retryable errors (per `retry_on`) propagate unchanged from the attempt
        that raised them. When every attempt fails, `RetryExhausted` is raised
        with the last error chained as its cause.
        """

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                if before_retry is not None:
                    before_retry(attempt)
                delay = self.delay_before(attempt)
                if delay > 0:
                    self.sleep(delay)
            try:
                return operation()
            except Exception as exc:
                if not self.retry_on(exc):
                    raise
                last_error = exc
                logger.warning(
                    "attempt_failed attempt=%s max_attempts=%s error=%s",
                    attempt,
                    self.max_attempts,
                    exc,
                )
        raise RetryExhausted(self.max_attempts, last_error) from last_error
