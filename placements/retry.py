"""
Retry helpers for the placement engine.

Two kinds of retry live here: backoff around calls to external services
(scoring service, notification webhook), and reload-and-retry of an
operation that lost an optimistic-concurrency race. Domain errors other
than stale versions are never retried.
"""

import time
import functools
from datetime import datetime
from typing import Callable, Optional, Tuple, Type

from .errors import StaleVersion


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class CircuitOpenError(Exception):
    """Raised when a call is refused because the circuit is open."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    wrap_exhausted: bool = True,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        wrap_exhausted: Raise RetryError when attempts run out; if False the
            last exception propagates unchanged

    Example:
        @exponential_backoff(max_retries=3, base_delay=0.5, exceptions=(requests.ConnectionError,))
        def post_event(url, body):
            return requests.post(url, json=body)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        if not wrap_exhausted:
                            raise
                        raise RetryError(
                            f"{func.__name__} failed after {max_retries + 1} attempts: {e}"
                        ) from e
                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    time.sleep(current_delay)
                    delay *= exponential_base
        return wrapper
    return decorator


def retry_on_conflict(max_retries: int = 3, base_delay: float = 0.05, on_retry: Optional[Callable] = None):
    """
    Re-run an operation that lost a version race.

    The wrapped callable must reload the placement itself on every call
    (service methods do). After the last attempt the StaleVersion error
    propagates to the caller.
    """
    return exponential_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=1.0,
        exceptions=(StaleVersion,),
        on_retry=on_retry,
        wrap_exhausted=False,
    )


class CircuitBreaker:
    """
    Circuit breaker pattern to stop hammering a failing external service.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests are blocked
    - HALF_OPEN: Testing if service has recovered
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: Type[Exception] = Exception,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before attempting recovery
            expected_exception: Exception type that counts as failure
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = self.CLOSED

    def call(self, func: Callable, *args, **kwargs):
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is OPEN
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        if self.state == self.OPEN:
            if self._should_attempt_reset():
                self.state = self.HALF_OPEN
            else:
                raise CircuitOpenError(
                    f"Circuit breaker is OPEN; retry after {self._time_until_reset():.0f}s"
                )

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _elapsed(self) -> float:
        return (datetime.now() - self.last_failure_time).total_seconds()

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._elapsed() >= self.recovery_timeout

    def _time_until_reset(self) -> float:
        if self.last_failure_time is None:
            return 0
        return max(0, self.recovery_timeout - self._elapsed())

    def _on_success(self):
        self.failure_count = 0
        self.state = self.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = datetime.now()
        if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = self.OPEN

    def reset(self):
        """Manually reset the circuit breaker."""
        self.failure_count = 0
        self.last_failure_time = None
        self.state = self.CLOSED


def is_retryable_status(status_code: int) -> bool:
    """
    Check if an HTTP status from an external service is worth retrying.

    Args:
        status_code: HTTP status code

    Returns:
        True for timeouts, rate limiting and gateway/server errors
    """
    return status_code in {408, 429, 500, 502, 503, 504}
