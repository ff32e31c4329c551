"""
Retry policy with exponential backoff for remote store calls.

Every list-page, fetch and upload request issued by an ObjectStore goes
through ``RetryPolicy.call``. Attempts are bounded, each delay is capped,
the accumulated delay across one call is capped, and a per-attempt timeout
is handed to the underlying SDK. Exhaustion surfaces as
``RetryExhaustedError``; it is never swallowed.
"""

import logging
import random
import threading
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from ..exceptions import RetryExhaustedError, SyncCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Configuration and executor for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        max_delay: float = 30.0,
        max_total_delay: float = 60.0,
        attempt_timeout: float = 120.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        jitter_range: Tuple[float, float] = (0.5, 1.5),
        retryable_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
    ):
        """
        Initialize retry policy.

        Args:
            max_attempts: Total attempts including the first one.
            base_delay: Delay in seconds before the first retry.
            max_delay: Cap on any single delay.
            max_total_delay: Cap on the sum of delays for one call; once
                reached no further retry is attempted.
            attempt_timeout: Per-attempt timeout in seconds passed to the SDK.
            exponential_base: Base for exponential backoff calculation.
            jitter: Whether to add randomness to delays.
            jitter_range: Tuple of (min_multiplier, max_multiplier) for jitter.
            retryable_exceptions: Exception types that trigger retries.
                If None, all exceptions are candidates.
            is_retryable: Optional predicate refining ``retryable_exceptions``
                (e.g. only 5xx/408/429 HTTP responses).
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_total_delay = max_total_delay
        self.attempt_timeout = attempt_timeout
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range
        self.retryable_exceptions = retryable_exceptions
        self.is_retryable = is_retryable

    def with_classifier(
        self,
        retryable_exceptions: Tuple[Type[BaseException], ...],
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
    ) -> "RetryPolicy":
        """Return a copy of this policy using a provider-specific classifier."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            max_total_delay=self.max_total_delay,
            attempt_timeout=self.attempt_timeout,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            jitter_range=self.jitter_range,
            retryable_exceptions=retryable_exceptions,
            is_retryable=is_retryable,
        )

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay after the given zero-indexed failed attempt.

        Returns:
            Delay in seconds.
        """
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            min_mult, max_mult = self.jitter_range
            delay *= random.uniform(min_mult, max_mult)
            delay = min(delay, self.max_delay)

        return delay

    def should_retry(self, exception: BaseException) -> bool:
        """Determine if exception should trigger a retry."""
        if isinstance(exception, SyncCancelledError):
            return False
        if self.retryable_exceptions is not None and not isinstance(
            exception, self.retryable_exceptions
        ):
            return False
        if self.is_retryable is not None:
            return self.is_retryable(exception)
        return True

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        description: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        **kwargs: Any,
    ) -> T:
        """
        Call ``func`` with retries.

        Args:
            func: Callable to invoke.
            description: Human-readable name used in log lines.
            cancel_event: Optional event; when set, no further attempt is made
                and pending backoff sleeps are interrupted.

        Returns:
            Whatever ``func`` returns.

        Raises:
            SyncCancelledError: If cancelled before or between attempts.
            RetryExhaustedError: If all attempts failed with retryable errors.
            Exception: Any non-retryable error raised by ``func``, unchanged.
        """
        name = description or getattr(func, "__name__", "call")
        last_exception: Optional[BaseException] = None
        total_wait = 0.0
        attempts = 0

        for attempt in range(self.max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError(f"{name} cancelled")

            attempts = attempt + 1
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        f"{name} succeeded on attempt {attempts} "
                        f"(waited {total_wait:.2f}s total)"
                    )
                return result
            except Exception as e:
                last_exception = e

                if not self.should_retry(e):
                    raise

                if attempt >= self.max_attempts - 1:
                    logger.error(f"{name} failed after {attempts} attempts: {e}")
                    break

                delay = self.calculate_delay(attempt)
                if total_wait + delay > self.max_total_delay:
                    logger.error(
                        f"{name} failed on attempt {attempts}; retry budget of "
                        f"{self.max_total_delay:.0f}s exhausted"
                    )
                    break

                total_wait += delay
                logger.warning(
                    f"{name} failed on attempt {attempts}: {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                if cancel_event is not None:
                    if cancel_event.wait(delay):
                        raise SyncCancelledError(f"{name} cancelled during backoff")
                else:
                    time.sleep(delay)

        raise RetryExhaustedError(f"Failed to execute {name}", last_exception, attempts)
