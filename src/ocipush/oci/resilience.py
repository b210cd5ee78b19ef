"""Retry policy for registry requests.

Only the registry transport retries; the loader and publisher surface every
failure unchanged.

Key Components:
    RetryPolicy: Exponential backoff with jitter for transient failures

Retry Timeline (default config):
    - Attempt 1: Immediate
    - Attempt 2: ~1s delay (with jitter)
    - Attempt 3: ~2s delay (with jitter)

Example:
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>> @policy.wrap
    ... def fetch_manifest():
    ...     return session.head(url)
"""

from __future__ import annotations

import functools
import random
import threading
import time
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import structlog

from ocipush.oci.errors import OperationCancelledError, RegistryUnavailableError
from ocipush.schemas.oci import RetryConfig

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Backoff waits on the cancellation event when one is given, so cancelling
    interrupts a pending retry instead of sleeping through it.

    Attributes:
        config: RetryConfig with max_attempts, delays, and jitter settings.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable_exceptions: tuple[type[Exception], ...] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retryable_exceptions: Exception types to retry on.
                Defaults to (RegistryUnavailableError, ConnectionError, TimeoutError).
            cancel: Event that aborts waiting between attempts.
        """
        self._config = config or RetryConfig()
        self._retryable_exceptions = retryable_exceptions or (
            RegistryUnavailableError,
            ConnectionError,
            TimeoutError,
        )
        self._cancel = cancel

    @property
    def config(self) -> RetryConfig:
        """Return the retry configuration."""
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        delay = initial * (multiplier ^ attempt), capped at max_delay_ms, with
        ±25% jitter when enabled.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )
        if self._config.jitter:
            spread = delay_ms * 0.25
            delay_ms += random.uniform(-spread, spread)
        return max(delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        return isinstance(exception, self._retryable_exceptions)

    def with_cancel(self, cancel: threading.Event | None) -> RetryPolicy:
        """Return a copy of this policy bound to ``cancel``."""
        return RetryPolicy(self._config, self._retryable_exceptions, cancel=cancel)

    def _wait(self, delay: float, operation: str) -> None:
        if self._cancel is None:
            time.sleep(delay)
            return
        if self._cancel.wait(delay):
            raise OperationCancelledError(operation)

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator retrying ``func`` on transient failures.

        Non-retryable exceptions propagate on the first occurrence; the last
        retryable exception propagates once attempts are exhausted.
        """

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempts = self._config.max_attempts
            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not self.should_retry(e) or attempt == attempts - 1:
                        if self.should_retry(e):
                            logger.warning("retry_exhausted", attempts=attempts, error=str(e))
                        raise
                    delay = self.calculate_delay(attempt)
                    logger.debug(
                        "retry_attempt",
                        attempt=attempt + 1,
                        max_attempts=attempts,
                        delay_seconds=delay,
                        error=str(e),
                    )
                    self._wait(delay, getattr(func, "__name__", "request"))
            raise RuntimeError("Retry exhausted without exception")

        return wrapper


__all__ = ["RetryPolicy"]
