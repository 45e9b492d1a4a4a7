"""
Retry logic with linear backoff for flaky, rate-limited remote calls.

Every network call in the pipeline goes through a RetryExecutor. Errors are
classified as rate-limited, transient or fatal; rate limits wait a cooldown,
transient errors back off linearly, fatal errors propagate immediately.
"""

import time
from enum import Enum
from typing import Any, Callable, Optional

from .logger import get_logger


class PipelineError(Exception):
    """Base class for pipeline errors."""
    pass


class RateLimitedError(PipelineError):
    """Provider asked us to slow down."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(PipelineError):
    """Timeout, connection reset, 5xx or overload signal."""
    pass


class FatalError(PipelineError):
    """Error that must not be retried (bad request, auth failure)."""
    pass


class MalformedResponseError(PipelineError):
    """Payload did not parse to the expected structured result."""

    def __init__(self, message: str, response: Optional[str] = None):
        super().__init__(message)
        self.response = response


class RetryError(PipelineError):
    """Raised when all retry attempts are exhausted."""
    pass


class StorageError(PipelineError):
    """Record store failure. Aborts the run."""
    pass


class ConfigError(PipelineError):
    """Missing or invalid configuration. Aborts the run."""
    pass


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0
DEFAULT_RATE_LIMIT_COOLDOWN = 15.0


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    retryable_codes = {
        408,  # Request Timeout
        409,  # Conflict (provider lock contention)
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
        529,  # Overloaded
    }

    return status_code in retryable_codes


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception is likely transient and should be retried.

    Args:
        exception: Exception to check

    Returns:
        True if error is likely transient (timeout, connection, 5xx, overload)
    """
    if isinstance(exception, TransientError):
        return True

    error_str = str(exception).lower()

    transient_keywords = [
        'timeout',
        'timed out',
        'connection',
        'temporary failure',
        'service unavailable',
        'overloaded',
        'econnreset',
        'etimedout',
        '503',
        '502',
        '500',
    ]

    return any(keyword in error_str for keyword in transient_keywords)


def default_classify(error: BaseException) -> ErrorKind:
    """Classify errors raised by our own code (taxonomy + keyword heuristics)."""
    if isinstance(error, RateLimitedError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, (FatalError, MalformedResponseError)):
        return ErrorKind.FATAL
    if is_transient_error(error):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def get_retry_after(error: BaseException) -> Optional[float]:
    """
    Extract a provider retry-after hint (seconds) from an error, if any.

    Looks at an explicit ``retry_after`` attribute first, then at the
    ``retry-after`` header of an attached HTTP response.
    """
    hint = getattr(error, "retry_after", None)
    if hint is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            try:
                hint = headers.get("retry-after")
            except AttributeError:
                hint = None
    if hint is None:
        return None
    try:
        value = float(hint)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


class RetryExecutor:
    """
    Runs remote operations with bounded retries.

    Rate limits wait the provider hint (+1s) or a fixed cooldown; transient
    errors wait ``base_delay * attempt``; fatal errors are re-raised at once.
    Both kinds share one attempt ceiling.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        rate_limit_cooldown: float = DEFAULT_RATE_LIMIT_COOLDOWN,
        name: str = "remote",
        sleep: Callable[[float], None] = time.sleep,
        logger=None,
    ):
        """
        Initialize executor.

        Args:
            max_attempts: Total attempts per operation (first call included)
            base_delay: Linear backoff unit in seconds for transient errors
            rate_limit_cooldown: Wait in seconds when rate limited without a hint
            name: Label used in log lines (provider or model name)
            sleep: Sleep function, injectable for tests
            logger: StructuredLogger; defaults to the global one
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_cooldown = rate_limit_cooldown
        self.name = name
        self._sleep = sleep
        self._logger = logger or get_logger()

    def execute(
        self,
        operation: Callable[[], Any],
        classify: Optional[Callable[[BaseException], ErrorKind]] = None,
        identifier: Optional[str] = None,
    ) -> Any:
        """
        Call ``operation`` until it succeeds, fails fatally or runs out of attempts.

        Args:
            operation: Zero-argument callable performing the remote call
            classify: Maps an error to an ErrorKind (default: default_classify)
            identifier: Originating record/window id, included in log lines

        Returns:
            Whatever ``operation`` returns

        Raises:
            The original error when classified fatal, RetryError when the
            attempt ceiling is reached.
        """
        classify = classify or default_classify
        label = f"[{self.name}]" + (f" {identifier}" if identifier else "")

        for attempt in range(1, self.max_attempts + 1):
            try:
                self._logger.record_api_call()
                return operation()
            except Exception as e:
                kind = classify(e)

                if kind == ErrorKind.FATAL:
                    self._logger.record_give_up()
                    self._logger.error(f"FAIL {label}: {e} (not retryable)", attempt=attempt)
                    raise

                if attempt == self.max_attempts:
                    self._logger.record_give_up()
                    self._logger.error(
                        f"FAIL {label} after {self.max_attempts} attempts: {e}",
                        kind=kind.value,
                    )
                    raise RetryError(
                        f"Failed after {self.max_attempts} attempts: {e}"
                    ) from e

                if kind == ErrorKind.RATE_LIMITED:
                    retry_after = get_retry_after(e)
                    wait = retry_after + 1 if retry_after is not None else self.rate_limit_cooldown
                    self._logger.record_retry(kind.value)
                    self._logger.warning(
                        f"RATE_LIMIT {attempt}/{self.max_attempts} {label}: waiting {wait:.1f}s",
                        retry_after=retry_after,
                    )
                else:
                    wait = self.base_delay * attempt
                    self._logger.record_retry(kind.value)
                    self._logger.warning(
                        f"RETRY {attempt}/{self.max_attempts} {label}: {e}",
                        wait=wait,
                    )

                self._sleep(wait)

        # Should not reach here, but just in case
        raise RetryError(f"Unexpected retry exhaustion {label}")
